import inspect
import logging
import time
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Literal, TypedDict

from fastapi.types import DecoratedCallable

from feeder import VERSION
from feeder.errors import FeedNotFound
from feeder.stats import Stats

if TYPE_CHECKING:
    from mypy_extensions import KwArg, VarArg

    # return type for api_method decorator
    APIMethodRet = Callable[[VarArg(Any), KwArg(Any)],
                            Coroutine[Any, Any, "ApiResults"]]
else:
    APIMethodRet = Any


# upper case: used as stats labels
OKStatus = Literal['OK']
ErrorStatus = Literal['ERROR']
Status = OKStatus | ErrorStatus

STATUS_OK: OKStatus = 'OK'
STATUS_ERROR: ErrorStatus = 'ERROR'

logger = logging.getLogger(__name__)


class ApiResultBase(TypedDict):
    duration: int               # ms
    version: str


class ApiResultOK(ApiResultBase):
    status: OKStatus
    results: Any


class ApiResultERROR(ApiResultBase):
    status: ErrorStatus
    statusCode: int
    message: str


ApiResults = ApiResultOK | ApiResultERROR


def _duration(start_time: float, status: Status, name: str) -> int:
    """
    return request duration in ms for ApiResultBase "duration".
    also log and report stats based on request name & status
    """
    sec = (time.time() - start_time) if start_time else 0
    stats = Stats.get()
    stats.incr('api.requests', labels=[('status', status), ('name', name)])
    stats.timing('duration', sec)
    logger.info("endpoint: %s, status: %s, duration: %.6f sec",
                name, status, sec)
    return int(round(sec * 1000))


def _error(start_time: float, name: str, code: int,
           message: str) -> ApiResultERROR:
    status: ErrorStatus = STATUS_ERROR
    return {
        'duration': _duration(start_time, status, name),
        'version': VERSION,
        'status': status,
        'statusCode': code,
        'message': message,
    }


def api_method(func: DecoratedCallable) -> APIMethodRet:
    """
    Decorator for API methods: wrap responses and add metadata
    (version, duration, etc).  Handles errors in one place.
    """
    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> ApiResults:
        start_time = time.time()
        name = f"{func.__module__}.{func.__name__}"
        try:
            if inspect.iscoroutinefunction(func):
                results = await func(*args, **kwargs)
            else:
                results = func(*args, **kwargs)
        except FeedNotFound as e:
            # expected: not logged to Sentry
            return _error(start_time, name, 404, str(e))
        except Exception as e:
            # log other, unexpected, exceptions to Sentry
            logger.exception(e)
            return _error(start_time, name, 400, str(e))

        status: OKStatus = STATUS_OK
        return {                # ApiResultOK
            'duration': _duration(start_time, status, name),
            'version': VERSION,
            'status': status,
            'results': results,
        }

    return wrapper
