"""
rwsep.callgraph
===============

Per-unit call graph and the interprocedural contamination closure.

The call graph is a directed graph where:

- **Nodes** are :class:`FunctionInfo` records, one per function declared
  in the analysed unit, keyed by a qualified *function key*.
- **Edges** are :class:`CallEdge` records, one per distinct
  (caller, callee key) pair, annotated with the first call site.

Function keys
-------------
``<unit>.<name>``
    Package-level functions.
``<unit>.<Type>.<name>``
    Methods; pointer receivers are normalised to the named type, so
    ``func (r *Reader) m()`` and a call ``r.m()`` on a ``*Reader`` or a
    ``Reader`` both use ``reader.Reader.m``.
``<pkg>.<name>``
    Package-qualified calls into other units.  They never resolve to a
    declared function and are therefore never contaminated.
bare name
    Anything else (calls through interfaces, function values, ...).

Resolution kinds
----------------
``DIRECT``
    The callee key names a function declared in the unit.
``EXTERNAL``
    A package-qualified call into another unit.
``UNRESOLVED``
    Anything the key scheme cannot name.

Public API
----------
    FunctionInfo        - per-function facts (modifies, taint, calls)
    CallEdge            - a (caller, callee key) edge with its call site
    CallGraph           - the unit call graph
    callgraph_summary   - human-readable multi-line summary
"""

from __future__ import annotations

import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from rwsep import syntax as S
from rwsep.types import GoType, TypeKind

_log = logging.getLogger(__name__)

__all__ = [
    "MAX_CALL_DEPTH",
    "CallResolutionKind",
    "FunctionInfo",
    "CallEdge",
    "CallGraph",
    "callgraph_summary",
]

MAX_CALL_DEPTH = 512


# ---------------------------------------------------------------------------
# Resolution kinds
# ---------------------------------------------------------------------------

class CallResolutionKind(enum.Enum):
    """How a callee key was resolved."""

    DIRECT     = "direct"
    EXTERNAL   = "external"
    UNRESOLVED = "unresolved"


# ---------------------------------------------------------------------------
# FunctionInfo
# ---------------------------------------------------------------------------

@dataclass
class FunctionInfo:
    """Facts about one declared function.

    Attributes
    ----------
    key : str
        Qualified function key.
    decl : FuncDecl
        The declaration; its body is walked again by the taint pass and
        searched for call sites by the closure pass.
    modifies : bool
        The function mutates protected data, directly or through a
        callee.  Only ever goes from False to True.
    tainted_parameters : set[int]
        Parameter positions that received a pointer to a protected field.
    parameter_sources : dict[int, SelectorExpr]
        The field reference each tainted parameter was bound to (first
        one seen wins).
    calls : list[str]
        Callee keys in traversal order, duplicates included.
    """

    key: str
    decl: S.FuncDecl
    modifies: bool = False
    tainted_parameters: Set[int] = field(default_factory=set)
    parameter_sources: Dict[int, S.SelectorExpr] = field(default_factory=dict)
    calls: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.decl.name

    @property
    def unique_calls(self) -> List[str]:
        """``calls`` without duplicates, first occurrence order."""
        return list(OrderedDict.fromkeys(self.calls))

    def parameter_bindings(self) -> List[Tuple[str, S.SelectorExpr]]:
        """``(parameter name, source field)`` for every tainted named parameter."""
        bindings = []
        for index in sorted(self.tainted_parameters):
            if index >= len(self.decl.params):
                continue
            name = self.decl.params[index].name
            if name and name != "_":
                bindings.append((name, self.parameter_sources[index]))
        return bindings

    def __repr__(self) -> str:
        return f"FunctionInfo({self.key!r}, modifies={self.modifies})"


# ---------------------------------------------------------------------------
# CallEdge
# ---------------------------------------------------------------------------

@dataclass
class CallEdge:
    """A directed edge: *caller* calls *callee* at least once."""

    caller: str
    callee: str
    call: Optional[S.CallExpr] = None
    resolution: CallResolutionKind = CallResolutionKind.DIRECT

    @property
    def position(self) -> S.Position:
        return self.call.pos if self.call is not None else S.NO_POS

    def __repr__(self) -> str:
        return f"CallEdge({self.caller} -> {self.callee}, {self.resolution.value})"


ContaminationCallback = Callable[[FunctionInfo, FunctionInfo, Optional[S.CallExpr]], None]


# ---------------------------------------------------------------------------
# CallGraph
# ---------------------------------------------------------------------------

class CallGraph:
    """Call graph of one unit.

    Attributes
    ----------
    unit_name : str
        Name of the unit (package) whose functions are registered.
    unit_path : str
        Import path of the unit.
    functions : OrderedDict[str, FunctionInfo]
        Declared functions, keyed by function key, in declaration order.
    """

    def __init__(self, unit_name: str, unit_path: str = "") -> None:
        self.unit_name = unit_name
        self.unit_path = unit_path or unit_name
        self.functions: OrderedDict[str, FunctionInfo] = OrderedDict()
        self._reported: Set[Tuple[str, str]] = set()

    # ----- keys -------------------------------------------------------------

    def _unit_of(self, typ: GoType) -> str:
        if typ.pkg_path in (self.unit_name, self.unit_path) or typ.pkg_name == self.unit_name:
            return self.unit_name
        return typ.pkg_name

    def function_key(self, decl: S.FuncDecl) -> str:
        """Key under which *decl* is registered."""
        if decl.recv is not None and decl.recv.typ is not None:
            named = decl.recv.typ.strip_pointers()
            if named.kind is TypeKind.NAMED:
                return f"{self.unit_name}.{named.name}.{decl.name}"
        return f"{self.unit_name}.{decl.name}"

    def callee_key(self, call: S.CallExpr) -> str:
        """Key of the function *call* invokes (see the module docstring)."""
        fun = S.unparen(call.fun)
        if isinstance(fun, S.Ident):
            if fun.obj in (S.ObjKind.VAR, S.ObjKind.BUILTIN):
                return fun.name
            if fun.pkg and fun.pkg not in (self.unit_name, self.unit_path):
                return f"{fun.pkg.rsplit('/', 1)[-1]}.{fun.name}"
            local = f"{self.unit_name}.{fun.name}"
            if fun.pkg or local in self.functions:
                return local
            return fun.name
        if isinstance(fun, S.SelectorExpr):
            base = S.unparen(fun.x)
            if isinstance(base, S.Ident) and (
                    base.obj is S.ObjKind.PKG or (base.obj is None and base.typ is None)):
                return f"{base.name}.{fun.sel}"
            if base.typ is not None:
                named = base.typ.strip_pointers()
                if named.kind is TypeKind.NAMED:
                    return f"{self._unit_of(named)}.{named.name}.{fun.sel}"
            return fun.sel
        return S.render(fun)

    def resolution_of(self, key: str) -> CallResolutionKind:
        if key in self.functions:
            return CallResolutionKind.DIRECT
        if "." in key:
            return CallResolutionKind.EXTERNAL
        return CallResolutionKind.UNRESOLVED

    # ----- node management --------------------------------------------------

    def register(self, decl: S.FuncDecl) -> FunctionInfo:
        """Create (or return) the record for *decl*."""
        key = self.function_key(decl)
        info = self.functions.get(key)
        if info is None:
            info = FunctionInfo(key=key, decl=decl)
            self.functions[key] = info
        return info

    def get(self, key: str) -> Optional[FunctionInfo]:
        return self.functions.get(key)

    def record_call(self, caller: FunctionInfo, callee_key: str) -> None:
        caller.calls.append(callee_key)

    def taint(self, callee: FunctionInfo, index: int, source: S.SelectorExpr) -> bool:
        """Mark parameter *index* of *callee* as tainted; True if it is new."""
        if index in callee.tainted_parameters:
            return False
        callee.tainted_parameters.add(index)
        callee.parameter_sources.setdefault(index, source)
        _log.debug("parameter %d of %s tainted by %s", index, callee.key, S.render(source))
        return True

    # ----- edges ------------------------------------------------------------

    def find_call_site(self, caller: FunctionInfo, callee_key: str) -> Optional[S.CallExpr]:
        """First call (preorder) in *caller*'s body whose callee key is *callee_key*."""
        if caller.decl.body is None:
            return None
        for call in S.iter_calls(caller.decl.body):
            if self.callee_key(call) == callee_key:
                return call
        return None

    @property
    def edges(self) -> List[CallEdge]:
        result = []
        for info in self.functions.values():
            for callee in info.unique_calls:
                result.append(CallEdge(
                    caller=info.key,
                    callee=callee,
                    call=self.find_call_site(info, callee),
                    resolution=self.resolution_of(callee),
                ))
        return result

    def callees(self, info: FunctionInfo) -> List[FunctionInfo]:
        """Declared functions *info* calls directly."""
        return [self.functions[k] for k in info.unique_calls if k in self.functions]

    # ----- contamination closure --------------------------------------------

    def propagate(self, on_contaminated: ContaminationCallback) -> int:
        """Spread ``modifies`` from callees to callers until nothing changes.

        For every caller/callee pair where the callee is contaminated,
        *on_contaminated* is called once with the first call site and
        the caller is marked as modifying.

        Returns the number of passes made.
        """
        passes = 0
        while True:
            passes += 1
            before = self._modifies_snapshot()
            memo: Dict[str, bool] = {}
            for key in list(self.functions):
                self._contaminated(key, memo, set(), 0, on_contaminated)
            if self._modifies_snapshot() == before:
                break
        _log.debug("closure converged after %d pass(es)", passes)
        return passes

    def _modifies_snapshot(self) -> Tuple[bool, ...]:
        return tuple(info.modifies for info in self.functions.values())

    def _contaminated(self, key: str, memo: Dict[str, bool], visiting: Set[str],
                      depth: int, on_contaminated: ContaminationCallback) -> bool:
        if key in memo:
            return memo[key]
        info = self.functions.get(key)
        if info is None:
            return False
        if key in visiting or depth >= MAX_CALL_DEPTH:
            return info.modifies
        visiting.add(key)
        for callee_key in info.unique_calls:
            if not self._contaminated(callee_key, memo, visiting, depth + 1, on_contaminated):
                continue
            if (key, callee_key) not in self._reported:
                self._reported.add((key, callee_key))
                on_contaminated(info, self.functions[callee_key],
                                self.find_call_site(info, callee_key))
            info.modifies = True
        visiting.discard(key)
        memo[key] = info.modifies
        return info.modifies

    # ----- whole-graph queries ----------------------------------------------

    def strongly_connected_components(self) -> List[List[FunctionInfo]]:
        """Compute SCCs using Tarjan's algorithm.

        Returns a list of SCCs in reverse topological order (callees before
        callers).  Each SCC with more than one node represents mutual
        recursion.
        """
        index_counter = [0]
        stack: List[FunctionInfo] = []
        lowlink: Dict[str, int] = {}
        index: Dict[str, int] = {}
        on_stack: Set[str] = set()
        result: List[List[FunctionInfo]] = []

        def strongconnect(v: FunctionInfo):
            index[v.key] = index_counter[0]
            lowlink[v.key] = index_counter[0]
            index_counter[0] += 1
            stack.append(v)
            on_stack.add(v.key)

            for w in self.callees(v):
                if w.key not in index:
                    strongconnect(w)
                    lowlink[v.key] = min(lowlink[v.key], lowlink[w.key])
                elif w.key in on_stack:
                    lowlink[v.key] = min(lowlink[v.key], index[w.key])

            if lowlink[v.key] == index[v.key]:
                scc: List[FunctionInfo] = []
                while True:
                    w = stack.pop()
                    on_stack.discard(w.key)
                    scc.append(w)
                    if w.key == v.key:
                        break
                result.append(scc)

        for v in self.functions.values():
            if v.key not in index:
                strongconnect(v)

        return result

    def is_recursive(self, info: FunctionInfo) -> bool:
        """Does *info* call itself, directly or through other functions?"""
        for scc in self.strongly_connected_components():
            if any(f.key == info.key for f in scc):
                return len(scc) > 1 or info.key in info.calls
        return False

    # ----- statistics -------------------------------------------------------

    def statistics(self) -> Dict[str, Any]:
        """Return a dict with summary statistics."""
        edges = self.edges
        sccs = self.strongly_connected_components()
        return {
            "functions": len(self.functions),
            "modifying_functions": sum(1 for f in self.functions.values() if f.modifies),
            "tainted_functions": sum(1 for f in self.functions.values()
                                     if f.tainted_parameters),
            "total_edges": len(edges),
            "direct_calls": sum(1 for e in edges
                                if e.resolution is CallResolutionKind.DIRECT),
            "external_calls": sum(1 for e in edges
                                  if e.resolution is CallResolutionKind.EXTERNAL),
            "unresolved_calls": sum(1 for e in edges
                                    if e.resolution is CallResolutionKind.UNRESOLVED),
            "sccs": len(sccs),
            "recursive_sccs": sum(1 for scc in sccs if len(scc) > 1),
        }

    # ----- serialisation ----------------------------------------------------

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation.

        Modifying functions are filled red, tainted ones yellow; calls
        that leave the unit point at ellipse nodes.
        """
        lines = ["digraph CallGraph {"]
        lines.append("  rankdir=TB;")
        if title:
            lines.append(f'  label="{title}";')
        lines.append('  node [shape=box, fontname="Helvetica", fontsize=10];')

        for info in self.functions.values():
            if info.modifies:
                attrs = 'style=filled, fillcolor="#ffcccc"'
            elif info.tainted_parameters:
                attrs = 'style=filled, fillcolor="#fff3cd"'
            else:
                attrs = 'style=filled, fillcolor="#ddeeff"'
            escaped = info.key.replace('"', '\\"')
            lines.append(f'  "{escaped}" [label="{escaped}", {attrs}];')

        res_attrs = {
            CallResolutionKind.DIRECT: "",
            CallResolutionKind.EXTERNAL: ", style=dashed, color=blue",
            CallResolutionKind.UNRESOLVED: ", style=dotted, color=red",
        }
        external: Set[str] = set()
        for e in self.edges:
            callee = e.callee.replace('"', '\\"')
            if e.resolution is not CallResolutionKind.DIRECT and callee not in external:
                external.add(callee)
                lines.append(f'  "{callee}" [label="{callee}", shape=ellipse];')
            elabel = e.resolution.value
            if e.position.line:
                elabel += f":{e.position.line}"
            caller = e.caller.replace('"', '\\"')
            lines.append(
                f'  "{caller}" -> "{callee}" '
                f'[label="{elabel}"{res_attrs[e.resolution]}];'
            )
        lines.append("}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.functions)

    def __repr__(self) -> str:
        return f"CallGraph({self.unit_name!r}, functions={len(self.functions)})"


# ---------------------------------------------------------------------------
# Convenience utilities
# ---------------------------------------------------------------------------

def callgraph_summary(cg: CallGraph) -> str:
    """Return a human-readable multi-line summary."""
    stats = cg.statistics()
    lines = [
        f"Call Graph Summary ({cg.unit_name})",
        f"  Functions:            {stats['functions']}",
        f"  Modifying functions:  {stats['modifying_functions']}",
        f"  Tainted functions:    {stats['tainted_functions']}",
        f"  Total edges:          {stats['total_edges']}",
        f"  Direct calls:         {stats['direct_calls']}",
        f"  External calls:       {stats['external_calls']}",
        f"  Unresolved calls:     {stats['unresolved_calls']}",
        f"  Recursive SCCs:       {stats['recursive_sccs']}",
        "",
        "Functions:",
    ]
    for info in cg.functions.values():
        flags = []
        if info.modifies:
            flags.append("modifies")
        if info.tainted_parameters:
            flags.append(f"tainted{sorted(info.tainted_parameters)}")
        if cg.is_recursive(info):
            flags.append("recursive")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        lines.append(f"  {info.key}{suffix}: calls [{', '.join(info.unique_calls)}]")
    return "\n".join(lines)
