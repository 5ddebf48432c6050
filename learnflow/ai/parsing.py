import re
import json
from typing import Any

from learnflow.errors import ParseError

_CODE_BLOCK_RE = re.compile(r'```(?:json)?\s*\n?([\s\S]*?)\n?```')
_JSON_RE = re.compile(r'(\[\s*\{[\s\S]*\}\s*\]|\{[\s\S]*\})')


def parse_ai_json(text: str) -> Any:
    """Read JSON out of a model reply.

    Tries the whole text, then a fenced code block, then the widest array-of-objects or
    object span.
    """
    if text is None:
        raise ParseError('Empty AI response')
    try:
        return json.loads(text)
    except ValueError:
        pass

    m = _CODE_BLOCK_RE.search(text)
    if m:
        try:
            return json.loads(m.group(1).strip())
        except ValueError:
            pass

    m = _JSON_RE.search(text)
    if m:
        try:
            return json.loads(m.group(1))
        except ValueError:
            pass

    raise ParseError('Could not parse JSON from AI response')
