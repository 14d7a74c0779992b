from typing import Sequence, TypeVar

T = TypeVar("T")


def subsample_frames(frames: Sequence[T], max_frames: int) -> list[T]:
    """
    At most max_frames items, taken with a fixed stride of len // max_frames
    from the start. The stride is not stretched over the whole sequence, so the
    picks can bunch toward the front. The last slot is then overwritten with the
    final item.
    """
    items = list(frames)
    if max_frames <= 0:
        return []
    if len(items) <= max_frames:
        return items

    step = len(items) // max_frames
    selected: list[T] = []
    for i in range(0, len(items), step):
        selected.append(items[i])
        if len(selected) >= max_frames:
            break

    if selected[-1] is not items[-1]:
        selected[-1] = items[-1]
    return selected
