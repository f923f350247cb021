"""Source-level instrumentation that injects scheduling yields before calls.

Interleaving-dependent bugs only show up when the scheduler happens to switch
threads (or tasks) between two operations on shared state.  This module
rewrites a module's function bodies so that every *instrumentable* call is
preceded by a yield point, which makes such switches far more likely while a
property exercises the code.

Each selected call expression ``call`` is replaced by::

    (__recheck_yield__(), call)[-1]                  # in plain functions
    (await __recheck_async_yield__(), call)[-1]      # in ``async def``

The tuple evaluates the yield first and the original call second, and
``[-1]`` hands back the call's own value, so argument evaluation order,
return values and exceptions are unchanged.

Which calls are instrumentable is decided by an :class:`InstrumentationPolicy`
over the resolved call target ``(module, function, arity)``.  The default
policy instruments every call except a denylist of scheduling-neutral
builtins; :meth:`InstrumentationPolicy.concurrency_policy` only instruments
calls that touch threads, locks, queues, events and the event loop.

Usage::

    import bank
    from recheck.instrument import InstrumentationPolicy, instrument_module

    instrumented_bank = instrument_module(bank, InstrumentationPolicy.concurrency_policy())

The rewriting is pure: :func:`instrument` works on a deep copy of the tree,
and :func:`instrument_module` returns a new module object, leaving the
imported module (and ``sys.modules``) untouched.
"""

from __future__ import annotations

import ast
import builtins
import copy
import importlib
import inspect
import pkgutil
import types
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, cast

import structlog

from recheck.errors import UnsupportedConstructError

logger = structlog.get_logger(__name__)

YIELD_NAME = "__recheck_yield__"
ASYNC_YIELD_NAME = "__recheck_async_yield__"
MARKER_NAME = "__recheck_instrumented__"

# The yield calls themselves are never instrumentable, whatever the policy
YIELD_FUNCTIONS = frozenset({YIELD_NAME, ASYNC_YIELD_NAME, "yield_point", "async_yield_point"})

# Scheduling-neutral builtins
DEFAULT_EXCLUDED_FUNCTIONS = frozenset(
    f"builtins.{name}"
    for name in (
        "abs", "all", "any", "bool", "bytes", "callable", "chr", "dict", "divmod", "enumerate",
        "filter", "float", "format", "frozenset", "getattr", "hasattr", "hash", "id", "int",
        "isinstance", "issubclass", "iter", "len", "list", "map", "max", "min", "next", "ord",
        "range", "repr", "reversed", "round", "set", "sorted", "str", "sum", "super", "tuple",
        "type", "zip",
    )
)

_CONCURRENCY_FUNCTIONS = frozenset(
    {
        # constructors and module-level functions
        "threading.Thread",
        "threading.Lock",
        "threading.RLock",
        "threading.Condition",
        "threading.Semaphore",
        "threading.BoundedSemaphore",
        "threading.Event",
        "threading.Barrier",
        "queue.Queue",
        "queue.LifoQueue",
        "queue.PriorityQueue",
        "queue.SimpleQueue",
        "time.sleep",
        "asyncio.sleep",
        "asyncio.gather",
        "asyncio.wait",
        "asyncio.wait_for",
        "asyncio.create_task",
        "asyncio.Lock",
        "asyncio.Event",
        "asyncio.Condition",
        "asyncio.Semaphore",
        "asyncio.Queue",
        "concurrent.futures.ThreadPoolExecutor",
        "concurrent.futures.wait",
        "concurrent.futures.as_completed",
        # methods of the objects above
        "acquire",
        "release",
        "locked",
        "wait",
        "wait_for",
        "notify",
        "notify_all",
        "set",
        "clear",
        "is_set",
        "put",
        "put_nowait",
        "get",
        "get_nowait",
        "task_done",
        "join",
        "start",
        "submit",
        "result",
        "cancel",
    }
)

_BUILTIN_NAMES = frozenset(dir(builtins))


@dataclass(frozen=True)
class CallTarget:
    """What a call expression resolves to, as far as the source tells.

    Attributes:
        module: Dotted module of the callee: the importing module for
            imported names, ``"builtins"`` for builtins, the instrumented
            module itself for its own names, None for method calls on
            arbitrary objects.
        function: Name of the callee (the attribute name for method calls).
        arity: Number of positional and keyword arguments at the call site.
    """

    module: str | None
    function: str
    arity: int

    @property
    def qualname(self) -> str:
        if self.module is None:
            return self.function
        return f"{self.module}.{self.function}"


@dataclass(frozen=True)
class CallSite:
    """A single call expression selected for instrumentation.

    Attributes:
        target: The resolved callee.
        args: Source text of each argument expression.
        function: Qualified name of the enclosing function.
        lineno: Line of the call.
        col_offset: Column of the call.
    """

    target: CallTarget
    args: tuple[str, ...]
    function: str
    lineno: int
    col_offset: int


def _names(values: Iterable[str] | None) -> frozenset[str] | None:
    if values is None:
        return None
    if isinstance(values, str):
        raise TypeError(f"Expected a collection of names, got the string {values!r}")
    return frozenset(values)


@dataclass(frozen=True)
class InstrumentationPolicy:
    """Decides which call targets get a yield point.

    Names in *included_functions* and *excluded_functions* match either the
    bare function name (``"put"``) or the qualified name
    (``"queue.Queue"``).

    Attributes:
        included_modules: Only calls into these modules (or their
            submodules) are instrumented.  None means every module.
        included_functions: Only calls to these functions are instrumented.
            None means every function.
        excluded_functions: Never instrumented.
        predicate: Extra filter over the whole target, e.g. on arity.
    """

    included_modules: frozenset[str] | None = None
    included_functions: frozenset[str] | None = None
    excluded_functions: frozenset[str] = DEFAULT_EXCLUDED_FUNCTIONS
    predicate: Callable[[CallTarget], bool] | None = field(default=None, compare=False)

    def is_instrumentable(self, target: CallTarget) -> bool:
        if target.function in YIELD_FUNCTIONS:
            return False
        if target.function in self.excluded_functions or target.qualname in self.excluded_functions:
            return False
        if self.included_modules is not None:
            if target.module is None:
                return False
            if not any(
                target.module == module or target.module.startswith(module + ".") for module in self.included_modules
            ):
                return False
        if self.included_functions is not None and not (
            target.function in self.included_functions or target.qualname in self.included_functions
        ):
            return False
        return self.predicate is None or self.predicate(target)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> InstrumentationPolicy:
        """Build a policy from a mapping such as a ``[tool.recheck.instrument]`` table.

        Recognised keys are ``included_modules``, ``included_functions`` and
        ``excluded_functions``.  Excluded functions extend the default
        denylist.
        """
        unknown = set(config) - {"included_modules", "included_functions", "excluded_functions"}
        if unknown:
            raise ValueError(f"Unknown instrumentation settings: {', '.join(sorted(unknown))}")
        excluded = _names(config.get("excluded_functions")) or frozenset()
        return cls(
            included_modules=_names(config.get("included_modules")),
            included_functions=_names(config.get("included_functions")),
            excluded_functions=DEFAULT_EXCLUDED_FUNCTIONS | excluded,
        )

    @classmethod
    def concurrency_policy(cls) -> InstrumentationPolicy:
        """Instrument only calls relevant to thread and task scheduling."""
        return cls(included_functions=_CONCURRENCY_FUNCTIONS)


@dataclass(frozen=True)
class InstrumentedModule:
    """Result of :func:`instrument`.

    Attributes:
        tree: The rewritten module.
        sites: Instrumented call sites in traversal order.
        diagnostics: Call sites left alone because they cannot be wrapped.
        already_instrumented: The input carried the instrumentation marker and
            was returned unchanged.
    """

    tree: ast.Module
    sites: tuple[CallSite, ...] = ()
    diagnostics: tuple[UnsupportedConstructError, ...] = ()
    already_instrumented: bool = False


# ---------------------------------------------------------------------------
# Name resolution
# ---------------------------------------------------------------------------


def _resolve_relative(module_name: str, level: int, module: str | None) -> str:
    if not level:
        return module or ""
    parts = module_name.split(".")
    base = parts[: max(len(parts) - level, 0)]
    if module:
        base.append(module)
    return ".".join(base)


def _import_aliases(tree: ast.AST, module_name: str) -> dict[str, str]:
    """Map every name bound by an import statement to the dotted name it refers to."""
    aliases: dict[str, str] = {}
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                if alias.asname:
                    aliases[alias.asname] = alias.name
                else:
                    head = alias.name.split(".", 1)[0]
                    aliases[head] = head
        elif isinstance(node, ast.ImportFrom):
            base = _resolve_relative(module_name, node.level, node.module)
            for alias in node.names:
                if alias.name == "*":
                    continue
                aliases[alias.asname or alias.name] = f"{base}.{alias.name}" if base else alias.name
    return aliases


def _dotted(node: ast.expr) -> list[str] | None:
    parts: list[str] = []
    while isinstance(node, ast.Attribute):
        parts.append(node.attr)
        node = node.value
    if not isinstance(node, ast.Name):
        return None
    parts.append(node.id)
    return parts[::-1]


def _is_yield_call(node: ast.expr) -> bool:
    if isinstance(node, ast.Await):
        node = node.value
    return (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in (YIELD_NAME, ASYNC_YIELD_NAME)
    )


def _is_last_index(node: ast.expr) -> bool:
    if isinstance(node, ast.Constant):
        return node.value == -1
    return (
        isinstance(node, ast.UnaryOp)
        and isinstance(node.op, ast.USub)
        and isinstance(node.operand, ast.Constant)
        and node.operand.value == 1
    )


def _is_wrapped(node: ast.Subscript) -> bool:
    value = node.value
    return (
        isinstance(value, ast.Tuple)
        and len(value.elts) == 2
        and _is_yield_call(value.elts[0])
        and isinstance(value.elts[1], ast.Call)
        and _is_last_index(node.slice)
    )


# ---------------------------------------------------------------------------
# Rewriting
# ---------------------------------------------------------------------------

_DEF = "def"
_ASYNC = "async"
_LAMBDA = "lambda"
_GENEXP = "genexp"
_CLASS = "class"


class YieldInstrumenter(ast.NodeTransformer):
    """Wraps instrumentable calls inside function bodies with a yield point.

    Calls are visited in syntactic order, outer call before the calls in its
    arguments, left to right.  Module-level code, decorators, default
    values and annotations run outside any function body and are left alone.
    """

    def __init__(self, policy: InstrumentationPolicy, module_name: str, aliases: Mapping[str, str] | None = None):
        self.policy = policy
        self.module_name = module_name
        self.aliases = dict(aliases or {})
        self.sites: list[CallSite] = []
        self.diagnostics: list[UnsupportedConstructError] = []
        self._scopes: list[tuple[str, str]] = []

    # -- scopes -------------------------------------------------------------

    def _enclosing(self) -> str:
        names = [name for _, name in self._scopes]
        return ".".join(names) if names else "<module>"

    def _mode(self) -> str | None:
        """How a call in the current scope is wrapped: sync, async, unsupported, or None."""
        crossed = False
        in_lambda = False
        for kind, _ in reversed(self._scopes):
            if kind == _ASYNC:
                return "unsupported" if crossed else _ASYNC
            if kind == _DEF:
                return _DEF
            if kind == _LAMBDA:
                in_lambda = True
            # await is illegal in lambdas and class bodies, and turns a
            # generator expression into an async generator
            crossed = True
        return _DEF if in_lambda else None

    def _visit_signature(self, args: ast.arguments) -> None:
        args.defaults = [self.visit(default) for default in args.defaults]
        args.kw_defaults = [None if default is None else self.visit(default) for default in args.kw_defaults]

    def _visit_function(self, node: ast.FunctionDef | ast.AsyncFunctionDef, kind: str) -> ast.AST:
        node.decorator_list = [self.visit(decorator) for decorator in node.decorator_list]
        self._visit_signature(node.args)
        self._scopes.append((kind, node.name))
        try:
            node.body = self._visit_body(node.body)
        finally:
            self._scopes.pop()
        return node

    def _visit_body(self, body: list[ast.stmt]) -> list[ast.stmt]:
        result: list[ast.stmt] = []
        for stmt in body:
            new = self.visit(stmt)
            if isinstance(new, list):
                result.extend(new)
            elif new is not None:
                result.append(new)
        return result

    def visit_FunctionDef(self, node: ast.FunctionDef) -> ast.AST:
        return self._visit_function(node, _DEF)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> ast.AST:
        return self._visit_function(node, _ASYNC)

    def visit_Lambda(self, node: ast.Lambda) -> ast.AST:
        self._visit_signature(node.args)
        self._scopes.append((_LAMBDA, "<lambda>"))
        try:
            node.body = self.visit(node.body)
        finally:
            self._scopes.pop()
        return node

    def visit_GeneratorExp(self, node: ast.GeneratorExp) -> ast.AST:
        # The first iterable is evaluated eagerly in the enclosing scope
        first, *rest = node.generators
        first.iter = self.visit(first.iter)
        self._scopes.append((_GENEXP, "<genexpr>"))
        try:
            first.target = self.visit(first.target)
            first.ifs = [self.visit(cond) for cond in first.ifs]
            for generator in rest:
                self.visit(generator)
            node.elt = self.visit(node.elt)
        finally:
            self._scopes.pop()
        return node

    def visit_ClassDef(self, node: ast.ClassDef) -> ast.AST:
        node.decorator_list = [self.visit(decorator) for decorator in node.decorator_list]
        node.bases = [self.visit(base) for base in node.bases]
        node.keywords = [self.visit(keyword) for keyword in node.keywords]
        self._scopes.append((_CLASS, node.name))
        try:
            node.body = self._visit_body(node.body)
        finally:
            self._scopes.pop()
        return node

    # Annotations are not evaluated as part of the body
    def visit_AnnAssign(self, node: ast.AnnAssign) -> ast.AST:
        node.target = self.visit(node.target)
        if node.value is not None:
            node.value = self.visit(node.value)
        return node

    # -- calls --------------------------------------------------------------

    def resolve(self, node: ast.Call) -> CallTarget:
        """Resolve the callee of *node* using the module's imports."""
        arity = len(node.args) + len(node.keywords)
        parts = _dotted(node.func)
        if parts is None:
            return CallTarget(None, ast.unparse(node.func), arity)
        head, *rest = parts
        if not rest:
            if head in self.aliases:
                module, _, function = self.aliases[head].rpartition(".")
                return CallTarget(module or None, function, arity)
            if head in _BUILTIN_NAMES:
                return CallTarget("builtins", head, arity)
            return CallTarget(self.module_name, head, arity)
        *path, function = parts
        if head in self.aliases:
            module = ".".join([self.aliases[head], *path[1:]])
            return CallTarget(module, function, arity)
        return CallTarget(None, function, arity)

    def visit_Subscript(self, node: ast.Subscript) -> ast.AST:
        if _is_wrapped(node):
            # Already carries a yield point; only look inside the call
            self.generic_visit(cast(ast.Tuple, node.value).elts[1])
            return node
        return self.generic_visit(node)

    def visit_Call(self, node: ast.Call) -> ast.AST:
        if _is_yield_call(node):
            return node
        mode = self._mode()
        target = self.resolve(node) if mode is not None else None
        wrap = False
        if target is not None and self.policy.is_instrumentable(target):
            if mode == "unsupported":
                self.diagnostics.append(
                    UnsupportedConstructError(
                        f"Cannot insert an awaited yield before {target.qualname}() inside a lambda, "
                        "class body or generator expression of an async function",
                        node,
                        self._enclosing(),
                    )
                )
            else:
                wrap = True
                self.sites.append(
                    CallSite(
                        target,
                        tuple(ast.unparse(arg) for arg in [*node.args, *node.keywords]),
                        self._enclosing(),
                        node.lineno,
                        node.col_offset,
                    )
                )

        self.generic_visit(node)
        if not wrap:
            return node
        return self._wrap(node, is_async=mode == _ASYNC)

    @staticmethod
    def _wrap(call: ast.Call, *, is_async: bool) -> ast.expr:
        name = ASYNC_YIELD_NAME if is_async else YIELD_NAME
        yield_call: ast.expr = ast.Call(func=ast.Name(id=name, ctx=ast.Load()), args=[], keywords=[])
        if is_async:
            yield_call = ast.Await(value=yield_call)
        wrapped = ast.Subscript(
            value=ast.Tuple(elts=[yield_call, call], ctx=ast.Load()),
            slice=ast.UnaryOp(op=ast.USub(), operand=ast.Constant(value=1)),
            ctx=ast.Load(),
        )
        return ast.copy_location(wrapped, call)


def _prelude() -> list[ast.stmt]:
    return ast.parse(
        f"from recheck._yield import yield_point as {YIELD_NAME}, async_yield_point as {ASYNC_YIELD_NAME}\n"
        f"{MARKER_NAME} = True\n"
    ).body


def _insert_prelude(tree: ast.Module) -> None:
    body = tree.body
    index = 1 if ast.get_docstring(tree, clean=False) is not None else 0
    while index < len(body) and isinstance(body[index], ast.ImportFrom) and body[index].module == "__future__":
        index += 1
    body[index:index] = _prelude()


def is_instrumented(obj: ast.Module | types.ModuleType) -> bool:
    """Whether *obj* (a module tree or a module object) carries the instrumentation marker."""
    if isinstance(obj, types.ModuleType):
        return bool(getattr(obj, MARKER_NAME, False))
    for stmt in obj.body:
        if isinstance(stmt, ast.Assign) and any(
            isinstance(target, ast.Name) and target.id == MARKER_NAME for target in stmt.targets
        ):
            return True
    return False


def instrument(
    tree: ast.Module, policy: InstrumentationPolicy | None = None, *, module_name: str = "__main__"
) -> InstrumentedModule:
    """Insert a yield point before every instrumentable call in *tree*.

    Args:
        tree: A parsed module.  Never mutated.
        policy: Which calls to instrument (the default policy if omitted).
        module_name: Dotted name of the module, used to resolve relative
            imports and the module's own functions.

    Returns:
        The rewritten copy with the instrumented call sites and any sites
        that had to be skipped.  A tree that is already instrumented comes
        back unchanged.
    """
    if is_instrumented(tree):
        logger.info("Module is already instrumented", module=module_name)
        return InstrumentedModule(copy.deepcopy(tree), already_instrumented=True)

    policy = policy if policy is not None else InstrumentationPolicy()
    tree = copy.deepcopy(tree)
    instrumenter = YieldInstrumenter(policy, module_name, _import_aliases(tree, module_name))
    tree = instrumenter.visit(tree)
    _insert_prelude(tree)
    ast.fix_missing_locations(tree)

    for diagnostic in instrumenter.diagnostics:
        logger.warning(
            "Call site left uninstrumented",
            module=module_name,
            function=diagnostic.function,
            lineno=diagnostic.lineno,
            reason=str(diagnostic),
        )
    logger.debug("Instrumented module", module=module_name, sites=len(instrumenter.sites))
    return InstrumentedModule(tree, tuple(instrumenter.sites), tuple(instrumenter.diagnostics))


def instrument_source(
    source: str,
    policy: InstrumentationPolicy | None = None,
    *,
    module_name: str = "__main__",
    filename: str = "<unknown>",
) -> InstrumentedModule:
    return instrument(ast.parse(source, filename), policy, module_name=module_name)


def compile_instrumented(result: InstrumentedModule, filename: str = "<instrumented>") -> types.CodeType:
    return compile(result.tree, filename, "exec")


def instrument_module(module: types.ModuleType, policy: InstrumentationPolicy | None = None) -> types.ModuleType:
    """Return an instrumented copy of an imported module.

    The copy is a fresh module object executed from the instrumented source;
    *module* itself and ``sys.modules`` are not touched.

    Raises:
        OSError: If the module's source is not available.
        TypeError: For built-in modules.
    """
    if is_instrumented(module):
        logger.error("Module is already instrumented", module=module.__name__)
        return module

    source = inspect.getsource(module)
    filename = inspect.getsourcefile(module) or f"<{module.__name__}>"
    result = instrument_source(source, policy, module_name=module.__name__, filename=filename)

    instrumented = types.ModuleType(module.__name__, module.__doc__)
    for attr in ("__file__", "__package__", "__spec__", "__loader__", "__path__"):
        if hasattr(module, attr):
            setattr(instrumented, attr, getattr(module, attr))
    exec(compile_instrumented(result, filename), instrumented.__dict__)
    logger.info("Loaded instrumented module", module=module.__name__, sites=len(result.sites))
    return instrumented


def instrument_package(
    package: types.ModuleType, policy: InstrumentationPolicy | None = None
) -> dict[str, types.ModuleType]:
    """Instrument a package and every module below it.

    Modules without Python source (extension modules) are skipped with a
    warning.
    """
    names = [package.__name__]
    if hasattr(package, "__path__"):
        names.extend(info.name for info in pkgutil.walk_packages(package.__path__, package.__name__ + "."))

    instrumented: dict[str, types.ModuleType] = {}
    for name in names:
        module = importlib.import_module(name)
        try:
            instrumented[name] = instrument_module(module, policy)
        except (OSError, TypeError) as e:
            logger.warning("Skipping module without source", module=name, error=str(e))
    return instrumented
