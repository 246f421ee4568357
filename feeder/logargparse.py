"""
argparser class with logging arguments for feeder scripts
"""

# NOTE! rq and uvicorn use "click" for command line parsing (instead of argparse).

import argparse
import json
import logging
import logging.config
import logging.handlers
import os
import sys

# PyPI:
import yaml

# local:
from feeder import DYNO, VERSION
from feeder.config import conf
import feeder.path as path
import feeder.sentry
import feeder.stats

LEVELS = [level.lower() for level in logging._nameToLevel.keys()]

LOGGER_LEVEL_SEP = ':'

LEVEL_DEST = 'log_level'        # args entry name!

FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'

logger = logging.getLogger(__name__)


def _load_log_config(fname: str) -> None:
    # lifted from uvicorn/config.py:
    if fname.endswith(".json"):
        with open(fname) as file:
            logging.config.dictConfig(json.load(file))
    elif fname.endswith((".yaml", ".yml")):
        with open(fname) as file:
            logging.config.dictConfig(yaml.safe_load(file))
    else:
        # See the note about fileConfig() here:
        # https://docs.python.org/3/library/logging.config.html#configuration-file-format
        logging.config.fileConfig(fname, disable_existing_loggers=False)


def _add_log_file(fname: str) -> None:
    """
    add daily rotating file handler to root logger
    """
    path.check_dir(path.LOG_DIR)
    if not fname.endswith('.log'):
        fname += '.log'
    log_path = os.path.join(path.LOG_DIR, fname)

    # rotate file daily, after midnight (UTC)
    handler = logging.handlers.TimedRotatingFileHandler(
        log_path, when='midnight', utc=True,
        backupCount=conf.LOG_BACKUP_COUNT)
    handler.setFormatter(logging.Formatter(FORMAT))
    logging.getLogger(None).addHandler(handler)

    logger.info(f"process {os.getpid()} logging to {log_path}")


class LogArgumentParser(argparse.ArgumentParser):
    def __init__(self, prog: str, descr: str):
        super().__init__(prog=prog, description=descr)

        if DYNO.startswith('run.'):
            dyno = 'run.x'
        else:
            dyno = DYNO
        default_fname = f"{prog}.{dyno}.log"

        # all loggers:
        self.add_argument('--verbose', '-v', action='store_const',
                          const='DEBUG', dest=LEVEL_DEST,
                          help="set default logging level to 'DEBUG'")
        self.add_argument('--quiet', '-q', action='store_const',
                          const='WARNING', dest=LEVEL_DEST,
                          help="set default logging level to 'WARNING'")
        self.add_argument('--list-loggers', action='store_true',
                          dest='list_loggers',
                          help="list all logger names and exit")
        self.add_argument('--log-config', action='store',
                          help="configure logging with .json, .yml, or .ini file",
                          metavar='LOG_CONFIG_FILE')
        self.add_argument('--log-file', default=default_fname, dest='log_file',
                          help=f"log file name (default: {default_fname})")
        self.add_argument('--log-level', '-l', action='store', choices=LEVELS,
                          dest=LEVEL_DEST, default=os.getenv(
                              'LOG_LEVEL', 'INFO'),
                          help="set default logging level to LEVEL")

        self.add_argument('--no-log-file', action='store_const',
                          const=None, dest='log_file',
                          help="don't log to a file")

        # set specific logger verbosity:
        self.add_argument('--logger-level', '-L', action='append',
                          dest='logger_level',
                          help=('set LOGGER (see --list-loggers) '
                                'verbosity to LEVEL (see --log-level)'),
                          metavar=f"LOGGER{LOGGER_LEVEL_SEP}LEVEL")

        self.add_argument('--set', '-S', action='append',
                          help=('set config/environment variable'
                                ' (may not effect all parameters)'),
                          metavar='VAR=VALUE')

        self.add_argument('--version', '-V', action='version',
                          version=f"feeder {prog} {VERSION}")

    # PLB: wanted to override parse_args, but couldn't get typing right for
    # mypy
    def my_parse_args(self) -> argparse.Namespace:
        args = self.parse_args()

        if args.set:
            for vv in args.set:
                var, val = vv.split('=', 1)
                os.environ[var] = val

        if args.list_loggers:
            for name in sorted(logging.root.manager.loggerDict):
                print(name)
            sys.exit(0)

        level = getattr(args, LEVEL_DEST)
        if level is None:
            level = 'INFO'
        else:
            level = level.upper()

        logging.basicConfig(format=FORMAT, level=level)

        if args.log_config:
            _load_log_config(args.log_config)

        if args.logger_level:
            for ll in args.logger_level:
                logger_name, level = ll.split(LOGGER_LEVEL_SEP, 1)
                # XXX check level.upper() in LEVELS?
                logging.getLogger(logger_name).setLevel(level.upper())

        if args.log_file:
            _add_log_file(args.log_file)

        # log startup banner and deferred config msgs
        conf.start(self.prog, self.description)

        # after startup banner, config
        if not args.log_file:
            logger.info("Not logging to a file")

        feeder.sentry.init()

        # NOTE! processes launched by a library (uvicorn workers)
        # never get here, and must not call Stats.get()
        feeder.stats.Stats.init(self.prog)

        return args
