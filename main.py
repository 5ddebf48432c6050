import os
import time
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from learnflow import __version__
from learnflow.ai import AIClient, AICallLog, AIConfig, AIConfigStore, AnswerGrader, KnowledgeExtractor
from learnflow.errors import ConfigurationMissing, LearnFlowError, ParseError, RemoteAPIError, ValidationError
from learnflow.service import StudyService
from learnflow.store import LearningStore, PersistencePort, get_persistence
from learnflow.sync import FeishuAuthClient, TableProxyClient, TableSync, direct_table_api, dispatch_table_action
from learnflow.utils import get_logger, log_error, log_request, set_request_context

LOG = get_logger()


class Settings(BaseSettings):
    HOST: str = os.getenv('HOST', '0.0.0.0')
    PORT: int = int(os.getenv('PORT', '8000'))
    ENVIRONMENT: str = os.getenv('ENVIRONMENT', 'development')
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')
    CORS_ORIGIN: str = os.getenv('CORS_ORIGIN', '*')
    LEARNFLOW_STORAGE: str = os.getenv('LEARNFLOW_STORAGE', 'file')
    # direct: this process talks to Feishu itself; proxy: go through TABLE_PROXY_URL
    TABLE_SYNC_MODE: str = os.getenv('TABLE_SYNC_MODE', 'direct')


settings = Settings()


class Services:
    """Wires the store, AI glue and sync objects around one persistence port."""

    _instance = None

    def __init__(self, persistence: Optional[PersistencePort] = None):
        self.persistence = persistence or get_persistence(settings.LEARNFLOW_STORAGE)
        self.store = LearningStore(self.persistence)
        self.ai_config = AIConfigStore(self.persistence)
        self.ai_log = AICallLog(self.persistence)
        self.ai_client = AIClient(self.ai_config, self.ai_log)
        self.study = StudyService(self.store, KnowledgeExtractor(self.ai_client), AnswerGrader(self.ai_client))
        table_api = direct_table_api if settings.TABLE_SYNC_MODE == 'direct' else TableProxyClient()
        self.table_sync = TableSync(self.store, self.persistence, table_api)
        self.store.on_save = lambda data: self.table_sync.schedule_auto_sync()

    @classmethod
    def get_instance(cls) -> 'Services':
        if cls._instance is None:
            cls._instance = Services()
        return cls._instance


app = FastAPI(title='LearnFlow Service', version=__version__, description='Learning tracker with AI knowledge extraction and spaced repetition')

origins = [o.strip() for o in settings.CORS_ORIGIN.split(',') if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.middleware('http')
async def add_request_id_and_logging(request: Request, call_next):
    request_id = request.headers.get('x-request-id') or os.urandom(8).hex()
    request.state.request_id = request_id
    set_request_context(request_id)
    start = time.time()
    LOG.info('http_request_start', extra={'method': request.method, 'path': request.url.path, 'request_id': request_id, 'client': request.client.host if request.client else None})
    try:
        response: Response = await call_next(request)
    except Exception as e:
        log_error(e, {'path': request.url.path, 'method': request.method})
        return _error(500, 'Internal server error', request)
    duration = int((time.time() - start) * 1000)
    log_request(request_id, request.method, request.url.path, response.status_code, duration, request.client.host if request.client else None)
    response.headers['X-Request-ID'] = request_id
    return response


def _error(status_code: int, message: str, request: Request) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'success': False, 'error': message, 'request_id': getattr(request.state, 'request_id', None)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    LOG.warning('validation_failed', extra={'path': request.url.path, 'error': str(exc)})
    return _error(400, str(exc), request)


@app.exception_handler(ConfigurationMissing)
async def configuration_missing_handler(request: Request, exc: ConfigurationMissing):
    LOG.warning('configuration_missing', extra={'path': request.url.path, 'error': str(exc)})
    return _error(400, str(exc), request)


@app.exception_handler(RemoteAPIError)
async def remote_api_error_handler(request: Request, exc: RemoteAPIError):
    LOG.warning('remote_api_error', extra={'path': request.url.path, 'error': str(exc), 'upstream_status': exc.status_code})
    return _error(502, str(exc), request)


@app.exception_handler(ParseError)
async def parse_error_handler(request: Request, exc: ParseError):
    return _error(502, str(exc), request)


@app.get('/health')
async def health():
    return {'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat(), 'service': 'learnflow'}


# ----- proxy endpoints -----

async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@app.post('/auth/exchange')
async def auth_exchange(request: Request):
    body = await _json_body(request)
    refreshing = body.get('grant_type') == 'refresh_token'
    if refreshing and not body.get('refresh_token'):
        return JSONResponse(status_code=400, content={'error': 'Missing refresh_token'})
    if not refreshing and not body.get('code'):
        return JSONResponse(status_code=400, content={'error': 'Missing code'})
    client = FeishuAuthClient()
    try:
        if refreshing:
            data = client.refresh(body['refresh_token'])
        else:
            data = client.exchange_code(body['code'])
    except (ConfigurationMissing, RemoteAPIError) as e:
        LOG.exception('auth_exchange_failed', exc_info=True)
        return JSONResponse(status_code=500, content={'error': str(e)})
    return data


@app.post('/table-proxy')
async def table_proxy(request: Request):
    body = await _json_body(request)
    try:
        return dispatch_table_action(body)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={'error': str(e)})
    except LearnFlowError as e:
        LOG.exception('table_proxy_failed', exc_info=True)
        return JSONResponse(status_code=500, content={'error': str(e) or 'Internal server error'})


# ----- study API -----

class AnalyzeRequest(BaseModel):
    title: Optional[str] = None
    content: str = Field(..., description='Study material to extract knowledge points from')


class TopicCreate(BaseModel):
    title: str
    content: str = ''


class TitleUpdate(BaseModel):
    title: str


class KnowledgePointBody(BaseModel):
    title: str
    description: str = ''


class PracticeStartRequest(BaseModel):
    knowledge_point_ids: Optional[List[str]] = None


class AnswerRequest(BaseModel):
    knowledge_point_id: str
    answer: str
    question: Optional[str] = None


class SyncConfigRequest(BaseModel):
    app_id: Optional[str] = None
    app_secret: Optional[str] = None
    app_token: Optional[str] = None
    auto_sync: Optional[bool] = None


@app.post('/topics/analyze')
def analyze_topic(req: AnalyzeRequest):
    result = Services.get_instance().study.analyze_material(req.title, req.content)
    return {'success': True, **result}


@app.post('/topics')
def create_topic(req: TopicCreate):
    topic = Services.get_instance().store.add_topic(req.title, req.content)
    return {'success': True, 'topic': topic}


@app.get('/topics')
def list_topics():
    data = Services.get_instance().store.get_all()
    return {'success': True, 'topics': data.topics, 'knowledge_points': data.knowledge_points}


@app.patch('/topics/{topic_id}')
def update_topic(topic_id: str, req: TitleUpdate, request: Request):
    topic = Services.get_instance().store.update_topic(topic_id, req.title)
    if topic is None:
        return _error(404, 'Topic not found', request)
    return {'success': True, 'topic': topic}


@app.delete('/topics/{topic_id}')
def delete_topic(topic_id: str, request: Request):
    if not Services.get_instance().store.delete_topic(topic_id):
        return _error(404, 'Topic not found', request)
    return {'success': True}


@app.post('/topics/{topic_id}/knowledge-points')
def add_knowledge_point(topic_id: str, req: KnowledgePointBody):
    kp = Services.get_instance().store.add_knowledge_point(topic_id, req.title, req.description)
    return {'success': True, 'knowledge_point': kp}


@app.patch('/knowledge-points/{kp_id}')
def update_knowledge_point(kp_id: str, req: KnowledgePointBody, request: Request):
    kp = Services.get_instance().store.update_knowledge_point(kp_id, req.title, req.description)
    if kp is None:
        return _error(404, 'Knowledge point not found', request)
    return {'success': True, 'knowledge_point': kp}


@app.delete('/knowledge-points/{kp_id}')
def delete_knowledge_point(kp_id: str, request: Request):
    if not Services.get_instance().store.delete_knowledge_point(kp_id):
        return _error(404, 'Knowledge point not found', request)
    return {'success': True}


@app.post('/practice/start')
def start_practice(req: PracticeStartRequest):
    questions = Services.get_instance().study.start_practice(req.knowledge_point_ids)
    return {'success': True, 'questions': questions}


@app.post('/practice/answer')
def submit_answer(req: AnswerRequest):
    result = Services.get_instance().study.submit_answer(req.knowledge_point_id, req.answer, req.question)
    return {'success': True, **result}


@app.get('/practice/history')
def practice_history():
    return {'success': True, 'groups': Services.get_instance().study.practice_history()}


@app.get('/review/due')
def review_due():
    return {'success': True, **Services.get_instance().study.review_queue()}


@app.post('/review/{kp_id}/skip')
def skip_review(kp_id: str, request: Request):
    kp = Services.get_instance().store.skip_review(kp_id)
    if kp is None:
        return _error(404, 'Knowledge point not found', request)
    return {'success': True, 'knowledge_point': kp}


@app.get('/dashboard')
def dashboard():
    return {'success': True, **Services.get_instance().study.dashboard()}


@app.get('/ai/config')
def get_ai_config():
    config = Services.get_instance().ai_config.get()
    return {'success': True, 'config': config.public_dict(), 'configured': config.is_configured()}


@app.put('/ai/config')
def put_ai_config(config: AIConfig):
    saved = Services.get_instance().ai_config.save(config)
    return {'success': True, 'config': saved.public_dict(), 'configured': saved.is_configured()}


@app.get('/ai/logs')
def get_ai_logs():
    logs = Services.get_instance().ai_log.get_all()
    return {'success': True, 'logs': logs, 'count': len(logs)}


@app.delete('/ai/logs')
def clear_ai_logs():
    Services.get_instance().ai_log.clear()
    return {'success': True}


# ----- table sync -----

@app.put('/sync/config')
def put_sync_config(req: SyncConfigRequest):
    sync = Services.get_instance().table_sync
    config = sync.update_config(req.app_id, req.app_secret, req.app_token, req.auto_sync)
    return {'success': True, 'configured': sync.is_configured(), 'auto_sync': bool(config.get('autoSync')), 'table_ids': config.get('tableIds') or {}}


@app.post('/sync/test')
def sync_test():
    return {'success': True, 'table_count': Services.get_instance().table_sync.test_connection()}


@app.post('/sync/init')
def sync_init():
    return {'success': True, 'table_ids': Services.get_instance().table_sync.init_tables()}


@app.post('/sync/upload')
def sync_upload():
    return {'success': True, 'uploaded': Services.get_instance().table_sync.upload_data()}


@app.post('/sync/download')
def sync_download():
    data = Services.get_instance().table_sync.download_data()
    return {'success': True, 'topics': len(data.topics), 'knowledge_points': len(data.knowledge_points), 'practices': len(data.practices)}


if __name__ == '__main__':
    import uvicorn
    uvicorn.run('main:app', host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
