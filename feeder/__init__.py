# To avoid cluttering startup messages with config values that
# aren't actually used in every script, try to:

# 1. keep just invariant ("constant") values here (no object creation)
# 2. not import other files/modules
# 3. not take any actions that log (ALSO! try not to log before
# LogArgParse.my_parse_args called)

import os

VERSION = "0.3.0"

# all config in feeder/config.py
# access via: "from feeder.config import conf; conf.XYZ"

# used for worker process title, sentry environment check
APP = os.environ.get('FEEDER_APP', 'unknown-feeder')

# Dokku supplies processname.N (or run.PID?):
DYNO = os.environ.get('DYNO', f"pid.{os.getpid()}")
