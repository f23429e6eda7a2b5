"""
Intermediate Representation (IR) shared by the parser, the generator and the graph adapter.

Every IR node carries a kind tag and one attribute dataclass per kind, so code that
consumes a node dispatches on ``node.kind`` and reads typed fields instead of poking
into an untyped dictionary.
"""

from dataclasses import dataclass, field, fields, asdict
from typing import Dict, List, Any, Optional, Union, NamedTuple, Tuple, Type
from enum import Enum
import hashlib
import uuid

from .exceptions import ValidationError


class NodeKind(Enum):
    """Closed set of IR node kinds."""
    INTERFACE = "interface"
    FUNCTION = "function"
    VARIABLE = "variable"
    LITERAL = "literal"
    BINARY_OP = "binaryOp"
    CALL = "call"
    PROPERTY_ACCESS = "propertyAccess"
    CONDITIONAL = "conditional"
    OBJECT = "object"
    API = "api"
    CONSOLE = "console"
    IMPORT = "import"
    EXPORT = "export"

    @classmethod
    def lookup(cls, value: Union['NodeKind', str]) -> Optional['NodeKind']:
        """Return the matching kind, or None for an unknown kind string."""
        if isinstance(value, NodeKind):
            return value
        for kind in cls:
            if kind.value == value:
                return kind
        return None


class LiteralKind(Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


class SourceRange(NamedTuple):
    """Half-open (start, end) offsets into the text a node came from."""
    start: int
    end: int

    def contains(self, offset: int) -> bool:
        """Half-open test, except that an empty range still contains its start."""
        return self.start <= offset < self.end or offset == self.start


def make_node_id(start: int, end: int, kind: Union[NodeKind, str]) -> str:
    """Derive a stable node id from a construct's span and syntactic kind."""
    kind_name = kind.value if isinstance(kind, NodeKind) else str(kind)
    digest = hashlib.sha1(f"{start}:{end}:{kind_name}".encode('utf-8')).hexdigest()
    return digest[:16]


def new_node_id() -> str:
    """Id for a node created on the canvas rather than parsed from text."""
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Attribute building blocks
# ---------------------------------------------------------------------------

@dataclass
class Parameter:
    """A function parameter."""
    name: str
    type: Optional[str] = None
    optional: bool = False
    default: Optional[str] = None

    @classmethod
    def coerce(cls, value: Union['Parameter', str, Dict[str, Any]]) -> 'Parameter':
        """Accept the "name: type" string form used by hand-edited graph data."""
        if isinstance(value, Parameter):
            return value
        if isinstance(value, str):
            name, _, type_text = value.partition(':')
            return cls(name=name.strip(), type=type_text.strip() or None)
        return _from_dict(cls, value)

    def render(self) -> str:
        text = self.name
        if self.optional:
            text += '?'
        if self.type:
            text += f": {self.type}"
        if self.default is not None:
            text += f" = {self.default}"
        return text


@dataclass
class Member:
    """An interface property signature."""
    name: str
    type: str = "any"
    optional: bool = False


@dataclass
class ObjectProperty:
    """One key of an object literal; value None means shorthand."""
    key: str
    value: Optional[str] = None


# ---------------------------------------------------------------------------
# Per-kind attributes
# ---------------------------------------------------------------------------

@dataclass
class InterfaceAttrs:
    name: str = ""
    members: List[Member] = field(default_factory=list)
    extends: List[str] = field(default_factory=list)


@dataclass
class FunctionAttrs:
    name: str = ""
    parameters: List[Parameter] = field(default_factory=list)
    return_type: Optional[str] = None
    is_async: bool = False
    raw_body: Optional[str] = None


@dataclass
class VariableAttrs:
    name: str = ""
    declared_type: Optional[str] = None
    initializer: Optional[str] = None
    keyword: str = "const"


@dataclass
class LiteralAttrs:
    value: str = ""
    literal_kind: LiteralKind = LiteralKind.STRING
    name: Optional[str] = None


@dataclass
class BinaryOpAttrs:
    operator: str = "+"
    lhs: Optional[str] = None
    rhs: Optional[str] = None
    name: Optional[str] = None


@dataclass
class CallAttrs:
    func_name: Optional[str] = None
    args: List[str] = field(default_factory=list)
    expected_params: List[str] = field(default_factory=list)
    name: Optional[str] = None


@dataclass
class PropertyAccessAttrs:
    obj_expr: Optional[str] = None
    property: str = ""
    name: Optional[str] = None


@dataclass
class ConditionalAttrs:
    test_expr: Optional[str] = None
    when_true: Optional[str] = None
    when_false: Optional[str] = None
    name: Optional[str] = None


@dataclass
class ObjectAttrs:
    properties: List[ObjectProperty] = field(default_factory=list)
    name: Optional[str] = None


@dataclass
class ConsoleAttrs:
    value_expr: Optional[str] = None
    label: str = "log"
    name: Optional[str] = None


@dataclass
class ApiAttrs:
    name: str = "fetchData"
    method: str = "GET"
    endpoint: str = ""
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: Optional[str] = None


@dataclass
class ImportAttrs:
    module: str = ""
    named: List[str] = field(default_factory=list)
    default: Optional[str] = None
    namespace: Optional[str] = None
    type_only: bool = False


@dataclass
class ExportAttrs:
    module: Optional[str] = None
    named: List[str] = field(default_factory=list)
    default: Optional[str] = None
    namespace: Optional[str] = None
    is_star: bool = False


@dataclass
class UnknownAttrs:
    """Payload of a node whose kind this core does not understand."""
    raw: Dict[str, Any] = field(default_factory=dict)


NodeAttributes = Union[
    InterfaceAttrs, FunctionAttrs, VariableAttrs, LiteralAttrs, BinaryOpAttrs,
    CallAttrs, PropertyAccessAttrs, ConditionalAttrs, ObjectAttrs, ConsoleAttrs,
    ApiAttrs, ImportAttrs, ExportAttrs, UnknownAttrs,
]

KIND_ATTRIBUTES: Dict[NodeKind, Type] = {
    NodeKind.INTERFACE: InterfaceAttrs,
    NodeKind.FUNCTION: FunctionAttrs,
    NodeKind.VARIABLE: VariableAttrs,
    NodeKind.LITERAL: LiteralAttrs,
    NodeKind.BINARY_OP: BinaryOpAttrs,
    NodeKind.CALL: CallAttrs,
    NodeKind.PROPERTY_ACCESS: PropertyAccessAttrs,
    NodeKind.CONDITIONAL: ConditionalAttrs,
    NodeKind.OBJECT: ObjectAttrs,
    NodeKind.CONSOLE: ConsoleAttrs,
    NodeKind.API: ApiAttrs,
    NodeKind.IMPORT: ImportAttrs,
    NodeKind.EXPORT: ExportAttrs,
}

# Kinds that only exist as expressions and need a synthesized binding at top level
EXPRESSION_KINDS = frozenset({
    NodeKind.LITERAL, NodeKind.BINARY_OP, NodeKind.CALL, NodeKind.PROPERTY_ACCESS,
    NodeKind.CONDITIONAL, NodeKind.OBJECT, NodeKind.CONSOLE,
})


def _from_dict(cls: Type, data: Dict[str, Any]) -> Any:
    known = {f.name for f in fields(cls)}
    return cls(**{key: value for key, value in data.items() if key in known})


def attributes_to_dict(attrs: NodeAttributes) -> Dict[str, Any]:
    """Serialize attributes into plain JSON-compatible data."""
    if isinstance(attrs, UnknownAttrs):
        return dict(attrs.raw)
    data = asdict(attrs)
    if isinstance(attrs, LiteralAttrs):
        data['literal_kind'] = attrs.literal_kind.value
    if isinstance(attrs, ApiAttrs):
        data['headers'] = [[key, value] for key, value in attrs.headers]
    return data


def attributes_from_dict(kind: Union[NodeKind, str], data: Optional[Dict[str, Any]]) -> NodeAttributes:
    """Rebuild typed attributes from plain data (e.g. a persisted node payload)."""
    data = dict(data or {})
    node_kind = NodeKind.lookup(kind)
    if node_kind is None:
        return UnknownAttrs(raw=data)

    cls = KIND_ATTRIBUTES[node_kind]
    if node_kind == NodeKind.INTERFACE:
        data['members'] = [m if isinstance(m, Member) else _from_dict(Member, m)
                           for m in data.get('members') or []]
    elif node_kind == NodeKind.FUNCTION:
        data['parameters'] = [Parameter.coerce(p) for p in data.get('parameters') or []]
    elif node_kind == NodeKind.OBJECT:
        data['properties'] = [p if isinstance(p, ObjectProperty) else _from_dict(ObjectProperty, p)
                              for p in data.get('properties') or []]
    elif node_kind == NodeKind.LITERAL and 'literal_kind' in data:
        data['literal_kind'] = LiteralKind(data['literal_kind'])
    elif node_kind == NodeKind.API:
        headers = data.get('headers') or []
        if isinstance(headers, dict):
            headers = list(headers.items())
        data['headers'] = [(str(key), str(value)) for key, value in headers]
    return _from_dict(cls, data)


@dataclass
class IRNode:
    """The unit of structure exchanged between parser, generator and graph adapter."""
    id: str
    kind: Union[NodeKind, str]
    attributes: NodeAttributes = field(default_factory=UnknownAttrs)
    parent_id: Optional[str] = None
    source_range: Optional[SourceRange] = None

    def __post_init__(self):
        known = NodeKind.lookup(self.kind)
        if known is not None:
            self.kind = known

    @property
    def kind_name(self) -> str:
        return self.kind.value if isinstance(self.kind, NodeKind) else str(self.kind)

    @property
    def is_top_level(self) -> bool:
        return self.parent_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'kind': self.kind_name,
            'parent_id': self.parent_id,
            'source_range': list(self.source_range) if self.source_range else None,
            'attributes': attributes_to_dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IRNode':
        source_range = data.get('source_range')
        return cls(
            id=data['id'],
            kind=data['kind'],
            attributes=attributes_from_dict(data['kind'], data.get('attributes')),
            parent_id=data.get('parent_id'),
            source_range=SourceRange(*source_range) if source_range else None,
        )


def children_index(nodes: List[IRNode]) -> Dict[str, List[IRNode]]:
    """Group nodes by parent id, keeping list order inside each group."""
    index: Dict[str, List[IRNode]] = {}
    for node in nodes:
        if node.parent_id is not None:
            index.setdefault(node.parent_id, []).append(node)
    return index


def validate_parent_references(nodes: List[IRNode]) -> List[ValidationError]:
    """Return one error per node whose parent id does not resolve in the list."""
    ids = {node.id for node in nodes}
    errors = []
    for node in nodes:
        if node.parent_id is not None and node.parent_id not in ids:
            errors.append(ValidationError(
                f"Node {node.id} references missing parent {node.parent_id}",
                {'node_id': node.id, 'parent_id': node.parent_id},
            ))
    return errors
