import pytest

from btfkit.rawtypes import FuncLinkage, IntEncoding, VarLinkage
from btfkit.types import (
    Array,
    Composite,
    Const,
    Datasec,
    Enum,
    EnumValue,
    Float,
    Func,
    FuncParam,
    FuncProto,
    Fwd,
    FwdKind,
    Int,
    Member,
    NamedType,
    Pointer,
    Qualifier,
    Restrict,
    Struct,
    Typedef,
    TypeSlot,
    Union,
    Var,
    VarSecinfo,
    Void,
    Volatile,
)


def _build(name):
    match name:
        case "void":
            return Void()
        case "int":
            return Int(size=2, bits=3)
        case "pointer":
            return Pointer(target=Void())
        case "array":
            return Array(type=Int())
        case "struct":
            return Struct(members=[Member(type=Void())])
        case "union":
            return Union(members=[Member(type=Void())])
        case "enum":
            return Enum()
        case "fwd":
            return Fwd(name="thunk")
        case "typedef":
            return Typedef(type=Void())
        case "volatile":
            return Volatile(type=Void())
        case "const":
            return Const(type=Void())
        case "restrict":
            return Restrict(type=Void())
        case "func":
            return Func(name="foo", type=Void())
        case "func_proto":
            return FuncProto(params=[FuncParam(name="bar", type=Void())], return_type=Void())
        case "var":
            return Var(type=Void())
        case "datasec":
            return Datasec(vars=[VarSecinfo(type=Void())])
    raise KeyError(name)


CASES = [
    ("void", 0),
    ("int", 0),
    ("pointer", 1),
    ("array", 1),
    ("struct", 1),
    ("union", 1),
    ("enum", 0),
    ("fwd", 0),
    ("typedef", 1),
    ("volatile", 1),
    ("const", 1),
    ("restrict", 1),
    ("func", 1),
    ("func_proto", 2),
    ("var", 1),
    ("datasec", 1),
]


@pytest.mark.parametrize("name,slots", CASES)
def test_copy_makes_a_new_object(name, slots):
    typ = _build(name)
    cpy = typ.copy()
    assert cpy is not typ
    assert type(cpy) is type(typ)
    assert len(list(cpy.walk())) == slots


@pytest.mark.parametrize("name,slots", CASES)
def test_walk_is_repeatable(name, slots):
    typ = _build(name)
    first = list(typ.walk())
    second = list(typ.walk())
    assert len(first) == slots
    assert first == second
    assert all(a.get() is b.get() for a, b in zip(first, second))


def test_copy_is_independent():
    original = Int(size=4)
    cpy = original.copy()
    original.size = 8
    assert cpy.size == 4


def test_struct_copy_copies_members_but_not_types():
    u16 = Int(size=2)
    original = Struct(members=[Member(name="a", type=u16), Member(name="b", type=u16)])
    cpy = original.copy()
    assert cpy.members is not original.members
    assert cpy.members[0] is not original.members[0]
    assert cpy.members[0].type is u16
    cpy.members[0].name = "changed"
    assert original.members[0].name == "a"


def test_enum_copy_copies_values():
    original = Enum(values=[EnumValue("foo", 23)])
    cpy = original.copy()
    cpy.values[0].value = 1
    assert original.values[0].value == 23


def test_walk_slots_point_into_copy():
    proto = FuncProto(return_type=Void(), params=[FuncParam("a", Int())])
    cpy = proto.copy()
    new_int = Int(size=8)
    slots = list(cpy.walk())
    slots[1].set(new_int)
    assert cpy.params[0].type is new_int
    assert proto.params[0].type is not new_int


def test_func_proto_walk_order():
    ret = Int(name="ret")
    param = Int(name="param")
    proto = FuncProto(return_type=ret, params=[FuncParam("p", param)])
    assert [slot.get() for slot in proto.walk()] == [ret, param]


def test_slot_set_and_get_attribute():
    ptr = Pointer()
    target = Int()
    (slot,) = ptr.walk()
    assert slot.get() is None
    slot.set(target)
    assert ptr.target is target
    assert slot.get() is target


def test_slot_on_list():
    first = Int()
    items = [first, None]
    slot = TypeSlot(items, 1)
    slot.set(first)
    assert items[1] is first
    assert TypeSlot(items, 0).get() is first
    assert TypeSlot(items, 0) == TypeSlot(items, 0)
    assert TypeSlot(items, 0) != TypeSlot(items, 1)


def test_types_compare_by_identity():
    assert Int(size=4) != Int(size=4)
    a = Int(size=4)
    assert a == a
    assert len({a, Int(size=4)}) == 2


def test_qualifiers_qualify():
    inner = Int()
    for cls in (Const, Volatile, Restrict):
        qualifier = cls(type=inner)
        assert isinstance(qualifier, Qualifier)
        assert qualifier.qualify() is inner
    assert not isinstance(Typedef(type=inner), Qualifier)


def test_is_bitfield():
    assert Int(offset_bits=1).is_bitfield()
    assert not Int().is_bitfield()


def test_class_hierarchy():
    member = Member(name="m", type=Int())
    struct = Struct(members=[member])
    union = Union(members=[member])
    assert isinstance(struct, Composite)
    assert struct.members[0] is member
    assert isinstance(union, Composite)
    assert union.members[0] is member
    assert not isinstance(Array(), Composite)

    named = [
        Int(name="n"),
        Struct(name="n"),
        Union(name="n"),
        Enum(name="n"),
        Fwd(name="n"),
        Func(name="n"),
        Typedef(name="n"),
        Var(name="n"),
        Datasec(name="n"),
        Float(name="n"),
    ]
    assert [typ.name for typ in named] == ["n"] * len(named)
    assert all(isinstance(typ, NamedType) for typ in named)

    target = Int()
    pointer = Pointer(target=target)
    assert pointer.target is target
    assert not isinstance(pointer, NamedType)


@pytest.mark.parametrize(
    "typ,text",
    [
        (Void(), "void#0"),
        (Int(type_id=3, size=4, encoding=IntEncoding.SIGNED), "int32#3"),
        (Int(size=2, bits=3), "uint16#0[bits=3]"),
        (Int(type_id=1, size=1, encoding=IntEncoding.CHAR), "char#1"),
        (Int(type_id=1, size=1, encoding=IntEncoding.BOOL), "bool#1"),
        (Pointer(type_id=2, target=Int(type_id=3)), "pointer#2[target=#3]"),
        (Array(type_id=4, type=Int(type_id=3), nelems=5), "array#4[type=#3 n=5]"),
        (Struct(type_id=2, name="foo"), 'struct#2["foo"]'),
        (Union(type_id=2, name="foo"), 'union#2["foo"]'),
        (Enum(type_id=6, name="e"), 'enum#6["e"]'),
        (Fwd(type_id=1, name="thunk", kind=FwdKind.UNION), 'fwd#1[union "thunk"]'),
        (Typedef(type_id=8, name="u8", type=Int(type_id=1)), 'typedef#8["u8" #1]'),
        (Const(type_id=5, type=Int(type_id=1)), "const#5[#1]"),
        (Volatile(type_id=5, type=Int(type_id=1)), "volatile#5[#1]"),
        (Restrict(type_id=5, type=Int(type_id=1)), "restrict#5[#1]"),
        (
            Func(type_id=3, name="foo", type=FuncProto(type_id=4), linkage=FuncLinkage.GLOBAL),
            'func#3[global "foo" proto=#4]',
        ),
        (
            FuncProto(type_id=5, return_type=Void(), params=[FuncParam("bar", Int(type_id=2))]),
            'proto#5["bar"=#2, return=#0]',
        ),
        (Var(type_id=7, name="x", linkage=VarLinkage.STATIC), 'var#7[static "x"]'),
        (Datasec(type_id=9, name=".data"), 'section#9[".data"]'),
        (Float(type_id=9, name="double", size=8), 'float64#9["double"]'),
    ],
)
def test_str(typ, text):
    assert str(typ) == text


def test_fwd_kind_str():
    assert str(Fwd(name="a", kind=FwdKind.STRUCT).kind) == "struct"
    assert str(Fwd(name="a", kind=FwdKind.UNION).kind) == "union"