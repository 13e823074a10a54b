"""
Parser for the text produced by `go tool pprof -raw`.

The output has a header, then three sections:

    Samples:
    samples/count cpu/nanoseconds
              1   10000000: 1 2 3
    Locations
         1: 0x4a5b3c M=1 main.leaf /src/main.go:12 s=0
                 main.inlinedCaller /src/main.go:20 s=0
    Mappings
         1: 0x400000/0x6d4000/0x0 /app/server

Every sample lists one value per sample type, followed by its location ids
(leaf first). A location may span several lines when functions were inlined
into it, the innermost function comes first.
"""

from __future__ import annotations

import re
from typing import Optional, Union

import pydantic as pd

SAMPLE_LINE = re.compile(r"^\s*(\d+(?:\s+\d+)*):((?:\s+\d+)*)\s*$")
LOCATION_LINE = re.compile(r"^\s*(\d+):\s+(0x[0-9a-fA-F]+)?\s*(?:M=\d+\s*)?(.*)$")


class Sample(pd.BaseModel):
    values: list[int]
    location_ids: list[int]


class Profile(pd.BaseModel):
    sample_names: list[str] = []
    samples: list[Sample] = []
    # location id -> function names, innermost first
    functions: dict[int, list[str]] = {}

    def stack(self, sample: Sample) -> list[str]:
        """Function names of a sample, leaf first."""

        frames = []
        for location_id in sample.location_ids:
            try:
                frames.extend(self.functions[location_id])
            except KeyError:
                raise ValueError(f"Sample refers to unknown location {location_id}") from None
        return frames


def parse_raw(raw: Union[bytes, str]) -> Profile:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw

    profile = Profile()
    section: Optional[str] = None
    current_location: Optional[int] = None

    for line in text.splitlines():
        stripped = line.strip()
        if stripped == "":
            continue

        if stripped == "Samples:":
            section = "names"
            continue
        if stripped == "Locations":
            section = "locations"
            continue
        if stripped == "Mappings":
            section = "mappings"
            continue

        if section == "names":
            profile.sample_names = stripped.split()
            section = "samples"
        elif section == "samples":
            match = SAMPLE_LINE.match(line)
            if match is None:
                # NOTE: label lines such as `bytes:[64]` follow their sample
                continue
            values = [int(value) for value in match.group(1).split()]
            if len(values) != len(profile.sample_names):
                raise ValueError(
                    f"Sample has {len(values)} values, expected {len(profile.sample_names)}: {stripped}"
                )
            profile.samples.append(
                Sample(values=values, location_ids=[int(location) for location in match.group(2).split()])
            )
        elif section == "locations":
            match = LOCATION_LINE.match(line)
            if match is not None:
                current_location = int(match.group(1))
                symbol = match.group(3).split()
                profile.functions[current_location] = [symbol[0] if symbol else match.group(2) or "unknown"]
            elif current_location is not None:
                profile.functions[current_location].append(stripped.split()[0])
            else:
                raise ValueError(f"Unexpected line in locations: {stripped}")

    if section is None:
        raise ValueError("No samples found in raw profile output")

    return profile


def select_sample(selector: str, sample_names: list[str]) -> int:
    """
    Pick the sample type to render. An empty selector means the first one,
    otherwise it is an index or a sample type such as `inuse_space`.
    """

    if selector == "":
        return 0

    if selector.isdigit():
        index = int(selector)
        if index >= len(sample_names):
            raise ValueError(f"Sample index {index} is out of range for {sample_names}")
        return index

    for index, name in enumerate(sample_names):
        if selector in (name, name.split("/")[0]):
            return index

    raise ValueError(f"Sample type '{selector}' not found in {sample_names}")
