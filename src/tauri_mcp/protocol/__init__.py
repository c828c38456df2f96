"""
Command Protocol Layer
======================

This package defines the envelopes exchanged between the requesting peer
(the automation agent) and the serving peer (the desktop application).
It does not know how envelopes are moved; see :mod:`tauri_mcp.transport`.

---------------------------------------------------------------------

Layer Architecture Overview
---------------------------

Caller
    │
    ▼
Client facade (client.py)
    send_command(command, payload) -> data

    │
    ▼
Message Model (protocol/message.py)
    Request / Response envelopes
    Payload normalization (string shorthand -> window_label)

    │
    ▼
Field Vocabulary (protocol/fields.py)
    Canonical names for envelope keys

---------------------------------------------------------------------

Below the Protocol Layer (for context)
--------------------------------------

Session Layer (transport/session.py)
    Pending-request table, correlation, timeout eviction

Framing Layer (transport/framing.py)
    Envelope <-> newline-delimited JSON frames

Connection Layer (transport/connection.py, transport/server.py)
    Moves bytes over a local socket or TCP

---------------------------------------------------------------------
"""

from . import fields
from . import message

from .message import Request, Response, normalize_payload


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
