''' Wrapper module for the JSON library used throughout tauri_mcp. The
    interface mirrors :func:`json.loads` and :func:`json.dumps`, with the
    notable exception that :func:`dumps` always returns bytes; everything
    that leaves this package is going straight onto a socket.
'''

import orjson


JSONDecodeError = orjson.JSONDecodeError
JSONEncodeError = orjson.JSONEncodeError


def dumps(value):
    ''' Encode *value* as compact UTF-8 JSON bytes. Non-string dictionary
        keys are coerced to strings, the same as the standard library does.
    '''

    return orjson.dumps(value, option=orjson.OPT_NON_STR_KEYS)


loads = orjson.loads


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
