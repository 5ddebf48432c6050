"""
Feishu integration: OAuth and bitable clients behind the proxy routes,
client-side table sync with debounced auto-upload, and the user session.
"""
from .feishu import FeishuAuthClient, FeishuTableClient, dispatch_table_action, TABLE_ACTIONS
from .debounce import DebouncedTask
from .table_sync import TableSync, TableProxyClient, direct_table_api, TABLE_DEFS
from .session import UserSession

__all__ = [
	'FeishuAuthClient', 'FeishuTableClient', 'dispatch_table_action', 'TABLE_ACTIONS',
	'DebouncedTask',
	'TableSync', 'TableProxyClient', 'direct_table_api', 'TABLE_DEFS',
	'UserSession',
]
