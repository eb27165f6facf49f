"""
Filter Graph Module

Small typed representation of an FFmpeg -filter_complex graph.

Chains are appended in order and serialized as a final step:

    graph = FilterGraph(input_count=2)
    graph.add(['0:v'], [Filter('setpts', ['PTS-STARTPTS'])], ['background'])
    graph.add(['background', '1:v'], [Filter('overlay', shortest=1)], ['out'])
    graph.validate('out')
    graph.serialize()
    # '[0:v]setpts=PTS-STARTPTS[background];[background][1:v]overlay=shortest=1[out]'

Stream specifiers ("0:v", "3:a") refer to engine inputs; every other label
must be produced by an earlier chain before it is consumed.
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Set

STREAM_SPECIFIER = re.compile(r'^(\d+):([va])$')


class FilterGraphError(ValueError):
    pass


def _format_arg(value: Any) -> str:
    if isinstance(value, bool):
        return '1' if value else '0'
    return str(value)


class Filter:
    """One filter: name plus ordered positional and keyword arguments."""

    def __init__(self, name: str, args: Optional[Sequence[Any]] = None, **kwargs: Any):
        self.name = name
        self.args = list(args or [])
        self.kwargs: Dict[str, Any] = dict(kwargs)

    def render(self) -> str:
        parts = [_format_arg(a) for a in self.args]
        parts.extend(f"{k}={_format_arg(v)}" for k, v in self.kwargs.items())
        if not parts:
            return self.name
        return f"{self.name}={':'.join(parts)}"

    def __repr__(self) -> str:
        return f"Filter({self.render()!r})"


class FilterChain:
    def __init__(self, inputs: Sequence[str], filters: Sequence[Filter], outputs: Sequence[str]):
        if not filters:
            raise FilterGraphError("Filter chain needs at least one filter")
        self.inputs = list(inputs)
        self.filters = list(filters)
        self.outputs = list(outputs)

    @property
    def kind(self) -> str:
        return self.filters[-1].name

    def render(self) -> str:
        ins = ''.join(f"[{label}]" for label in self.inputs)
        outs = ''.join(f"[{label}]" for label in self.outputs)
        body = ','.join(f.render() for f in self.filters)
        return f"{ins}{body}{outs}"


class FilterGraph:
    def __init__(self, input_count: int):
        self.input_count = input_count
        self.chains: List[FilterChain] = []

    def add(self, inputs: Sequence[str], filters: Sequence[Filter], outputs: Sequence[str]) -> FilterChain:
        chain = FilterChain(inputs, filters, outputs)
        self.chains.append(chain)
        return chain

    def chains_of_kind(self, kind: str) -> List[FilterChain]:
        return [c for c in self.chains if c.kind == kind]

    def validate(self, final_label: str) -> None:
        produced: Set[str] = set()
        consumed: Set[str] = set()

        for position, chain in enumerate(self.chains):
            for label in chain.inputs:
                match = STREAM_SPECIFIER.match(label)
                if match:
                    index = int(match.group(1))
                    if index >= self.input_count:
                        raise FilterGraphError(
                            f"Chain {position} references input {index} but only "
                            f"{self.input_count} inputs exist"
                        )
                    continue
                if label not in produced:
                    raise FilterGraphError(f"Chain {position} consumes [{label}] before it is produced")
                if label in consumed:
                    raise FilterGraphError(f"Label [{label}] is consumed more than once")
                consumed.add(label)

            for label in chain.outputs:
                if STREAM_SPECIFIER.match(label):
                    raise FilterGraphError(f"Chain {position} cannot output stream specifier [{label}]")
                if label in produced:
                    raise FilterGraphError(f"Label [{label}] is produced more than once")
                produced.add(label)

        if final_label not in produced:
            raise FilterGraphError(f"Final label [{final_label}] is never produced")
        if final_label in consumed:
            raise FilterGraphError(f"Final label [{final_label}] is consumed inside the graph")

    def serialize(self) -> str:
        return ';'.join(chain.render() for chain in self.chains)

    def __str__(self) -> str:
        return self.serialize()
