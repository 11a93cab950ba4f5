from typing import List, Optional

from n3x_common.events import Event
from n3x_common.messages import Direction

APP_ID = "n3x"        # value of the "d" tag on every offer
APP_TAG = "d"
DIRECTION_TAG = "x"
RECIPIENT_TAG = "p"

_DIRECTION_WORDS = {
    "buy": Direction.BUY,
    "buying": Direction.BUY,
    "sell": Direction.SELL,
    "selling": Direction.SELL,
}


def direction_tag_value(direction: Direction) -> str:
    ''' Single mapping used by both the publisher and the filter builder '''
    return direction.value

def parse_direction(text: str) -> Optional[Direction]:
    '''
    This function parses a user-typed direction.
    Input: "Buy", "buying", "SELL", ... (case-insensitive)
    Output: Direction, or None if the word is not recognised
    '''
    if not isinstance(text, str):
        return None
    return _DIRECTION_WORDS.get(text.strip().lower())

def offer_tags(direction: Direction) -> List[List[str]]:
    return [[APP_TAG, APP_ID], [DIRECTION_TAG, direction_tag_value(direction)]]

def recipient_tags(pubkey: str) -> List[List[str]]:
    return [[RECIPIENT_TAG, pubkey]]

def tag_values(event: Event, name: str) -> List[str]:
    return [t[1] for t in event.tags if len(t) >= 2 and t[0] == name]

def offer_direction(event: Event) -> Optional[Direction]:
    '''
    Read the direction back from an offer event. None unless the event
    carries exactly one application tag and exactly one known direction tag.
    '''
    if tag_values(event, APP_TAG) != [APP_ID]:
        return None
    values = tag_values(event, DIRECTION_TAG)
    if len(values) != 1:
        return None
    for d in Direction:
        if direction_tag_value(d) == values[0]:
            return d
    return None
