from collections import Counter

from .raw import Profile


def to_flame_input(profile: Profile, sample_index: int) -> bytes:
    """
    Fold the stacks of a profile into the input format of flamegraph.pl,
    one `root;...;leaf <count>` line per distinct stack.
    """

    folded: Counter[str] = Counter()
    for sample in profile.samples:
        value = sample.values[sample_index]
        if value == 0:
            continue

        frames = profile.stack(sample)
        if not frames:
            continue
        folded[";".join(reversed(frames))] += value

    # NOTE: sorted, so the same dump always gives the same flame graph
    return b"".join(f"{stack} {count}\n".encode() for stack, count in sorted(folded.items()))
