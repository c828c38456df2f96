""" A class representation of the two envelopes that travel over the
    command transport: a :class:`Request` naming a command and carrying its
    parameters, and the :class:`Response` that answers it.
"""

from .. import json
from . import fields


def normalize_payload(payload):
    """ Return the canonical dictionary form of a request *payload*. A bare
        string is shorthand for the label of the window the command applies
        to; a missing payload is an empty dictionary. Anything else must
        already be a dictionary.
    """

    if payload is None:
        return dict()

    if isinstance(payload, str):
        return {fields.WINDOW_LABEL: payload}

    if isinstance(payload, dict):
        return payload

    raise TypeError('payload must be a dict or a string, not ' + type(payload).__name__)



class Request:
    """ A :class:`Request` names the *command* to run on the serving peer,
        and the *payload* of parameters for it. The payload is normalized
        at construction time, so a :class:`Request` never carries the
        string shorthand any further than this.

        The *id* is optional on the wire. When present, a conforming
        serving peer echoes it back in the matching :class:`Response`.
    """

    def __init__(self, command, payload=None, id=None):

        if not isinstance(command, str) or command == '':
            raise ValueError('command must be a non-empty string')

        self.command = command
        self.payload = normalize_payload(payload)
        self.id = id


    def __eq__(self, other):
        if not isinstance(other, Request):
            return NotImplemented
        return self.to_dict() == other.to_dict()


    def __repr__(self):
        return 'Request(%r, %r, id=%r)' % (self.command, self.payload, self.id)


    def to_dict(self):
        envelope = dict()
        envelope[fields.COMMAND] = self.command
        envelope[fields.PAYLOAD] = self.payload

        if self.id is not None:
            envelope[fields.ID] = self.id

        return envelope


    def encapsulate(self):
        """ Return the JSON encoding of this request, without the frame
            delimiter.
        """

        return json.dumps(self.to_dict())


    @classmethod
    def from_dict(cls, envelope):
        """ Construct a :class:`Request` from a decoded JSON value. Raises
            ValueError if the value is not a request envelope.
        """

        if not isinstance(envelope, dict):
            raise ValueError('request must be a JSON object')

        try:
            command = envelope[fields.COMMAND]
        except KeyError:
            raise ValueError("missing field '%s'" % (fields.COMMAND))

        if not isinstance(command, str):
            raise ValueError("field '%s' must be a string" % (fields.COMMAND))

        payload = envelope.get(fields.PAYLOAD)
        id = envelope.get(fields.ID)

        if id is not None:
            id = str(id)

        try:
            return cls(command, payload, id)
        except TypeError as e:
            raise ValueError(str(e))


# end of class Request



class Response:
    """ A :class:`Response` reports the outcome of one :class:`Request`.
        A successful response carries the handler's return value as *data*;
        an unsuccessful response carries a human-readable *error*. If the
        serving peer reports failure without saying why, the error is
        filled in with a fixed default message.

        :ivar id: The identifier of the originating request, if the serving
            peer echoed one.
    """

    def __init__(self, success, data=None, error=None, id=None):

        success = bool(success)

        if success == False and not error:
            error = fields.DEFAULT_ERROR

        self.success = success
        self.data = data
        self.error = error
        self.id = id


    def __eq__(self, other):
        if not isinstance(other, Response):
            return NotImplemented
        return self.to_dict() == other.to_dict()


    def __repr__(self):
        if self.success:
            return 'Response(success=True, data=%r, id=%r)' % (self.data, self.id)
        return 'Response(success=False, error=%r, id=%r)' % (self.error, self.id)


    def to_dict(self):
        envelope = dict()
        envelope[fields.SUCCESS] = self.success

        if self.data is not None:
            envelope[fields.DATA] = self.data
        if self.error is not None:
            envelope[fields.ERROR] = self.error
        if self.id is not None:
            envelope[fields.ID] = self.id

        return envelope


    def encapsulate(self):
        return json.dumps(self.to_dict())


    @classmethod
    def from_dict(cls, envelope):
        """ Construct a :class:`Response` from a decoded JSON value. Raises
            ValueError if the value is not a response envelope.
        """

        if not isinstance(envelope, dict):
            raise ValueError('response must be a JSON object')

        try:
            success = envelope[fields.SUCCESS]
        except KeyError:
            raise ValueError("missing field '%s'" % (fields.SUCCESS))

        error = envelope.get(fields.ERROR)
        if error is not None and not isinstance(error, str):
            error = str(error)

        id = envelope.get(fields.ID)
        if id is not None:
            id = str(id)

        return cls(success, envelope.get(fields.DATA), error, id)


    @classmethod
    def ok(cls, data=None, id=None):
        return cls(True, data=data, id=id)


    @classmethod
    def failed(cls, error, id=None):
        return cls(False, error=error, id=id)


# end of class Response


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
