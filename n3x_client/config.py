import argparse, os
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

DEFAULT_RELAY = "tcp://127.0.0.1:8008"


@dataclass
class ClientConfig:
    relays: List[str] = field(default_factory=lambda: [DEFAULT_RELAY])
    query_timeout: float = 1.0      # seconds a "show offers" query waits
    publish_timeout: float = 5.0    # seconds to wait for a relay's OK
    log_level: str = "WARNING"


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="n3x marketplace client")
    ap.add_argument("--relay", action="append", dest="relays", metavar="URL",
                    help="Relay address (tcp://host:port); repeat for several relays. "
                         "Default: $N3X_RELAYS or " + DEFAULT_RELAY)
    ap.add_argument("--query-timeout", type=float, default=None, help="Seconds to wait for query results")
    ap.add_argument("--publish-timeout", type=float, default=None, help="Seconds to wait for relay confirmation")
    ap.add_argument("--log-level", default=None, help="Logging level (default: $N3X_LOG_LEVEL or WARNING)")
    return ap

def load_config(argv: Optional[Sequence[str]] = None, environ=None) -> ClientConfig:
    '''
    This function builds the client configuration.
    Command line options win over environment variables, which win over defaults.
        N3X_RELAYS     comma-separated relay addresses
        N3X_LOG_LEVEL  logging level name
    '''
    environ = os.environ if environ is None else environ
    args = build_parser().parse_args(argv)
    cfg = ClientConfig()

    env_relays = [r.strip() for r in environ.get("N3X_RELAYS", "").split(",") if r.strip()]
    if args.relays:
        cfg.relays = list(args.relays)
    elif env_relays:
        cfg.relays = env_relays

    if args.query_timeout is not None:
        cfg.query_timeout = args.query_timeout
    if args.publish_timeout is not None:
        cfg.publish_timeout = args.publish_timeout
    cfg.log_level = (args.log_level or environ.get("N3X_LOG_LEVEL") or cfg.log_level).upper()
    return cfg
