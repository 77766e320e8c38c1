import logging
from functools import wraps


def busy_guard(flag):
    '''
    Gate an async method behind a boolean attribute of its instance.

    While ``flag`` is set, further calls return ``False`` immediately without
    running the method.  The flag is cleared on every exit path, including
    exceptions raised by the method.
    :param flag: attribute name holding the busy state
    :return:
    '''

    def functions(func):
        @wraps(func)
        async def run(self, *args, **kwargs):
            if getattr(self, flag, False):
                logging.debug("%s ignored: %s already in progress", func.__name__, flag)
                return False
            setattr(self, flag, True)
            try:
                return await func(self, *args, **kwargs)
            finally:
                setattr(self, flag, False)

        return run

    return functions
