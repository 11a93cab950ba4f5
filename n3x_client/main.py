"""
Main entry point for the n3x client.
Connect to the relays, start the notification dispatcher, then run the menu.
"""
import logging, sys, time

from n3x_client.config import load_config
from n3x_client.dispatcher import Dispatcher
from n3x_client.gate import SessionGate
from n3x_client.inbox import OrderInbox
from n3x_client.net import RelayClient, TransportError
from n3x_client.publisher import Publisher
from n3x_client.ui import MenuUI
from n3x_common.crypto import Keys
from n3x_common.filters import subscription_filters

logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    """
    Start the n3x client.

    Step 1: Generate a fresh identity and connect to the configured relays
    Step 2: Subscribe to new offers and to our inbox, start the dispatcher thread
    Step 3: Run the menu until the user quits
    """
    cfg = load_config(argv)
    logging.basicConfig(level=cfg.log_level,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    keys = Keys.generate()
    try:
        session = RelayClient(keys, cfg.relays, publish_timeout=cfg.publish_timeout)
        session.connect()
    except TransportError as e:
        print(f"Cannot connect: {e}")
        return 1

    gate = SessionGate(session)
    try:
        with gate.hold() as s:
            s.subscribe(subscription_filters(keys.public_key, since=int(time.time())))
    except TransportError as e:
        print(f"Cannot subscribe: {e}")
        session.shutdown()
        return 1

    inbox = OrderInbox(notify=print)
    dispatcher = Dispatcher(gate, session.next_notification,
                            on_order=inbox.on_order, on_confirmation=inbox.on_confirmation)
    dispatcher.start()

    print(f"Your pubkey: {keys.public_key}")
    ui = MenuUI(gate, Publisher(gate), inbox, query_timeout=cfg.query_timeout)
    try:
        ui.run()
    finally:
        with gate.hold() as s:
            s.shutdown()
        dispatcher.join(timeout=2.0)
        logger.info("dispatcher stats: %s", dispatcher.stats)
    return 0


if __name__ == "__main__":
    sys.exit(main())
