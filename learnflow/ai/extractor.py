"""Knowledge point extraction: the configured model first, a heading/paragraph heuristic as fallback."""
from __future__ import annotations

import re
from typing import List, Optional, Tuple

from pydantic import BaseModel

from learnflow.errors import ParseError
from learnflow.utils import attempt, get_logger, with_fallback
from .client import AIClient
from .parsing import parse_ai_json

LOG = get_logger()

MAX_POINTS = 15

_TITLE_PATTERNS = [
    re.compile(r'^#{1,4}\s+(.+)'),
    re.compile(r'^(\d+[.、)）])\s*(.+)'),
    re.compile(r'^[一二三四五六七八九十]+[.、]\s*(.+)'),
    re.compile(r'^\*\*(.+)\*\*'),
    re.compile(r'^[•\-*]\s*\*\*(.+)\*\*'),
]
_LIST_MARKER_RE = re.compile(r'^[\s\-*•]+')
_PARAGRAPH_SPLIT_RE = re.compile(r'\n\s*\n')


class ExtractedPoint(BaseModel):
    title: str
    description: str = ''


def _match_title(line: str) -> Optional[str]:
    for pattern in _TITLE_PATTERNS:
        m = pattern.match(line)
        if m:
            text = m.group(m.lastindex or 0)
            return re.sub(r'[#*]', '', text.replace('**', '')).strip()
    return None


def extract_knowledge_points_local(text: str) -> List[ExtractedPoint]:
    """Split material into points at markdown, numbered or bold headings.

    Text without recognizable headings falls back to one point per paragraph.
    """
    points: List[ExtractedPoint] = []
    current_title = ''
    current_desc: List[str] = []

    for line in (l.strip() for l in text.split('\n')):
        if not line:
            continue
        title = _match_title(line)
        if title is not None and 2 < len(title) < 80:
            if current_title:
                points.append(ExtractedPoint(title=current_title, description='\n'.join(current_desc)))
            current_title = title
            current_desc = []
        elif current_title:
            clean = _LIST_MARKER_RE.sub('', line).strip()
            if len(clean) > 5:
                current_desc.append(clean)

    if current_title:
        points.append(ExtractedPoint(title=current_title, description='\n'.join(current_desc)))

    if not points:
        paragraphs = [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(text) if len(p.strip()) > 20]
        for i, p in enumerate(paragraphs):
            lines = p.split('\n')
            rest = '\n'.join(lines[1:])
            points.append(ExtractedPoint(title=f'Knowledge point {i + 1}: {lines[0][:60]}', description=rest or p))

    return points[:MAX_POINTS]


class KnowledgeExtractor:
    def __init__(self, client: AIClient):
        self.client = client

    def extract_remote(self, text: str) -> List[ExtractedPoint]:
        config = self.client.config_store.get()
        response = self.client.call(config.extract_prompt, text, 'extract')
        items = parse_ai_json(response)
        if isinstance(items, list):
            valid = [
                ExtractedPoint(title=i['title'], description=str(i.get('description') or ''))
                for i in items
                if isinstance(i, dict) and isinstance(i.get('title'), str) and i['title']
            ]
            if valid:
                return valid[:MAX_POINTS]
        raise ParseError('AI response is not a list of knowledge points')

    def extract(self, text: str) -> Tuple[List[ExtractedPoint], str]:
        """Return the extracted points and the strategy (``remote`` or ``local``) that produced them."""
        return with_fallback(
            'extract_knowledge_points',
            lambda: attempt(self.extract_remote, text),
            lambda: extract_knowledge_points_local(text),
        )
