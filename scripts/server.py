"""
Startup script for feeder control API server

Takes common feeder logging arguments
"""
import os

import uvicorn

# local
from feeder.logargparse import LogArgumentParser

SCRIPT = 'server'

if __name__ == '__main__':
    p = LogArgumentParser(SCRIPT, 'Worker Control API Server')

    def_port = int(os.getenv('PORT', '8000'))
    def_host = '0.0.0.0'

    p.add_argument('--host', default=def_host, type=str,
                   help=f"addr to listen on [default: {def_host}]")

    p.add_argument('--port', default=def_port, type=int,
                   help=f"port to listen on [default: {def_port}]")

    # NOTE! no --workers: each worker would need its own Stats.init,
    # which LogArgumentParser does once per process.

    # info logging before this call unlikely to be seen:
    args = p.my_parse_args()       # parse logging args, output start message

    # after my_parse_args: imports config & sentry
    import server

    # disable uvicorn stdio logging:
    # https://github.com/tiangolo/fastapi/issues/1508#issuecomment-723457712
    uvicorn.run(server.app,
                host=args.host,
                log_config=None,
                port=args.port,
                timeout_keep_alive=500)
