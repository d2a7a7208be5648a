#!/usr/bin/env python3
"""
Opaque pagination cursors: URL-safe base64 of a small JSON document, unpadded.
"""

import base64
import binascii
import json
from typing import Any, Dict, Optional

from .errors import ValidationError, ErrorCode


class CursorCodec:
    """Encodes the last seen sort key so the next page starts after it"""

    @staticmethod
    def encode(payload: Dict[str, Any]) -> str:
        raw = json.dumps(payload, separators=(',', ':'), default=str).encode('utf-8')
        return base64.urlsafe_b64encode(raw).decode('ascii').rstrip('=')

    @staticmethod
    def decode(cursor: Optional[str]) -> Optional[Dict[str, Any]]:
        if cursor is None or not str(cursor).strip():
            return None
        token = str(cursor).strip()
        try:
            raw = base64.urlsafe_b64decode(token + '=' * (-len(token) % 4))
            payload = json.loads(raw.decode('utf-8'))
        except (binascii.Error, ValueError) as e:
            raise ValidationError(ErrorCode.INVALID_CURSOR, str(e))
        if not isinstance(payload, dict) or 'v' not in payload:
            raise ValidationError(ErrorCode.INVALID_CURSOR, 'unrecognized cursor')
        return payload
