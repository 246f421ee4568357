"""
Startup script for feeder worker

NOTE! With rq, each invocation of this script runs ONE worker process
(one job at a time), so the number of workers is controlled by
the number of processes started.
"""

# PyPI
from setproctitle import setproctitle

# local
from feeder import APP, DYNO
from feeder.browser import BrowserRenderer
from feeder.config import conf
from feeder.logargparse import LogArgumentParser
import feeder.queue
import feeder.tasks

SCRIPT = 'worker'

if __name__ == '__main__':
    p = LogArgumentParser(SCRIPT, 'Queue Worker')

    # info logging before this call unlikely to be seen:
    args = p.my_parse_args()       # parse logging args, output start message

    setproctitle(f"{APP} {DYNO} {SCRIPT}")

    if conf.BROWSER_ENABLED:
        # browser stopped on exit (relaunched if it dies)
        with BrowserRenderer() as renderer:
            feeder.tasks.install(feeder.tasks.make_ingester(renderer))
            feeder.queue.worker()
    else:
        feeder.tasks.install(feeder.tasks.make_ingester())
        feeder.queue.worker()
