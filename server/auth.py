"""
FastAPI authentication/authorization for feeder control API

from https://fastapi.tiangolo.com/advanced/security/http-basic-auth/
"""

from enum import Enum
import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from feeder.config import conf


class Access(Enum):
    READ = 'read'
    WRITE = 'write'


logger = logging.getLogger(__name__)

security = HTTPBasic()


def _byteify(param: Optional[str]) -> Optional[bytes]:
    if param:
        return param.encode('utf8')
    return None


USER_BYTES = _byteify(conf.FEEDER_API_USER)
PASS_BYTES = _byteify(conf.FEEDER_API_PASS)

if not USER_BYTES or not PASS_BYTES:
    logger.error("Need FEEDER_API_USER and FEEDER_API_PASS config")


def unauthorized() -> None:
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail='Unauthorized',
        headers={'WWW-Authenticate': 'Basic'},
    )


def access(credentials: HTTPBasicCredentials, type: Access) -> None:
    """
    raises HTTPException if access denied
    """
    # compare_digest both, REGARDLESS, to thwart timing attacks
    # (we report runtime in response).
    # compare_digest cannot handle non-ASCII strings: UTF-8 encode.
    if USER_BYTES and PASS_BYTES:
        user_ok = secrets.compare_digest(
            credentials.username.encode("utf8"), USER_BYTES)
        pass_ok = secrets.compare_digest(
            credentials.password.encode("utf8"), PASS_BYTES)
    else:
        user_ok = pass_ok = False

    if not user_ok or not pass_ok:
        unauthorized()


def read_access(credentials: HTTPBasicCredentials = Depends(security)) -> None:
    """
    called via:
    @router.get('/api/a/protected', dependencies=[Depends(read_access)])
    """
    return access(credentials, Access.READ)


def write_access(
        credentials: HTTPBasicCredentials = Depends(security)) -> None:
    return access(credentials, Access.WRITE)
