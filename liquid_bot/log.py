import json, logging, os

LOG = logging.getLogger("liquid_bot")


def setup_logging(debug: bool = None):
    if debug is None:
        debug = bool(os.getenv("DEBUG"))
    logging.basicConfig(
        level=(logging.DEBUG if debug else logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s"
    )


def _dump(tag, msg, kw):
    return json.dumps({tag: msg, **kw}, default=str)

def dbg(msg, **kw): LOG.debug(_dump("dbg", msg, kw))
def info(msg, **kw): LOG.info(_dump("info", msg, kw))
def warn(msg, **kw): LOG.warning(_dump("warn", msg, kw))
def err(msg, **kw): LOG.error(_dump("err", msg, kw))
