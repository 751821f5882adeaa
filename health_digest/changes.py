from typing import Iterable, List, Optional

from .models import Event


def find_closed(previous: Optional[Iterable[Event]], current: Iterable[Event]) -> List[Event]:
    """
    Events that were open last run and are missing from the current open set.

    Matching is by ARN only; a changed status or timestamp on the same ARN does
    not count as closed. Order follows `previous`. No snapshot means nothing closed.
    """
    if not previous:
        return []
    current_arns = {str(e.arn) for e in current}
    closed: List[Event] = []
    seen = set()
    for event in previous:
        arn = str(event.arn)
        if arn in current_arns or arn in seen:
            continue
        seen.add(arn)
        closed.append(event)
    return closed
