"""测试公共夹具"""

import pytest
from unittest.mock import AsyncMock, MagicMock, Mock


def build_session(status: int = 200, body='', error: Exception = None) -> MagicMock:
    """构建模拟的 aiohttp.ClientSession 异步上下文

    body 为 bytes 时按 aiohttp 的方式解码，默认 errors='strict'
    """
    response = Mock()
    response.status = status
    if isinstance(body, bytes):
        async def decode_body(encoding=None, errors='strict'):
            return body.decode(encoding or 'utf-8', errors)
        response.text = AsyncMock(side_effect=decode_body)
    else:
        response.text = AsyncMock(return_value=body)

    response_ctx = MagicMock()
    response_ctx.__aenter__ = AsyncMock(return_value=response)
    response_ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    if error is not None:
        session.request = Mock(side_effect=error)
        session.post = Mock(side_effect=error)
        session.get = Mock(side_effect=error)
    else:
        session.request = Mock(return_value=response_ctx)
        session.post = Mock(return_value=response_ctx)
        session.get = Mock(return_value=response_ctx)

    session_ctx = MagicMock()
    session_ctx.__aenter__ = AsyncMock(return_value=session)
    session_ctx.__aexit__ = AsyncMock(return_value=False)
    session_ctx.session = session
    session_ctx.response = response
    return session_ctx


@pytest.fixture
def http_session():
    """返回模拟会话的构造函数"""
    return build_session
