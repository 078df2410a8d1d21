# btfkit

btfkit reads and works with BPF Type Format (BTF) data. BTF is the type
information that the Linux kernel and BPF object files carry. btfkit is pure
Python and has no runtime dependencies.

## What it does

- **Decodes BTF.**
  - `btfkit.spec.load_naked_spec` decodes a bare `.BTF` blob.
  - `load_spec_from_elf` reads the `.BTF` and `.BTF.ext` sections of a BPF ELF
    object. It fills in data-section sizes and variable offsets from the ELF
    symbols.
  - `load_spec_from_vmlinux` reads the `.BTF` section of a kernel image.
- **Reads the running kernel's BTF.** `load_kernel_spec` reads it from
  `/sys/kernel/btf/vmlinux`. If that file is missing, it tries the usual
  vmlinux locations under `/boot`, `/lib/modules` and `/usr/lib/debug`. A
  successful load is cached.
- **Builds a linked type graph.** `btfkit.types` has the types `Void`, `Int`,
  `Pointer`, `Array`, `Struct`, `Union`, `Enum`, `Fwd`, `Typedef`, `Volatile`,
  `Const`, `Restrict`, `Func`, `FuncProto`, `Var`, `Datasec` and `Float`.
  `btfkit.typegraph` works on that graph:
  - `sizeof` gives the size of a type.
  - `copy_type` and `copy_types` make deep copies and handle cycles.
  - `essential_name` strips `___flavour` suffixes.
- **Queries a spec.**
  - `Spec.find_type(name, cls)` returns the single type of a class with that
    name.
  - `Spec.copy` copies the type graph.
  - `Spec.marshal` encodes the spec back to a `.BTF` section in either byte
    order. It can optionally strip function linkage.
- **Reads per-program extended info.** `Spec.program(section, length)` returns
  a `Program` for one section.
  - `Program.func_infos` and `Program.line_infos` return the record size and
    the binary records, with offsets counted in instructions.
  - `Program.append` joins programs that share a spec.
- **Computes CO-RE relocations.** `Program.fixups(target)` and
  `btfkit.core.core_relocate` compute a `CoreFixup` for each relocated
  instruction offset, matched against a target spec. With no target, the
  kernel's BTF is used.
- **Lower-level pieces.**
  - `btfkit.rawparse` parses and writes the raw section (`parse_btf`,
    `marshal_btf`, `BtfHeader`).
  - `btfkit.rawtypes` holds the raw type records.
  - `btfkit.extinfo` parses `.BTF.ext`.
  - `btfkit.strings.StringTable` is the string section.
  - `btfkit.elf.read_elf` is a small, defensive ELF reader.
- **Helpers.**
  - Kernel version parsing and detection: `btfkit.version.Version`,
    `parse_version`, `find_kernel_version`, `kernel_version`.
  - Possible CPU counting: `btfkit.cpu.possible_cpus` and `parse_cpus`.
  - Cached feature probes: `btfkit.feature.feature_test`.

## Installation

From a checkout of the project:

```
pip install .
```

## Example

```python
from pathlib import Path

from btfkit.spec import load_spec_from_elf
from btfkit.types import Struct

spec = load_spec_from_elf(Path("prog.o").read_bytes())

iphdr = spec.find_type("iphdr", Struct)
for member in iphdr.members:
    print(member.name, member.offset_bits)

prog = spec.program("xdp", 8)
for offset, fixup in prog.fixups(spec).items():
    print(offset, fixup)
```

Failures raise exceptions:

- `btfkit.spec.NotFoundError` when a type or the `.BTF` section is missing.
- `btfkit.spec.NoExtendedInfoError` when a spec has no `.BTF.ext` data.
- `btfkit.errors.NotSupportedError` when the data or the kernel needs
  something btfkit cannot provide.
- `ValueError`, or a subclass such as `ImpossibleRelocationError` or
  `AmbiguousRelocationError`, for malformed input and failed relocations.

## What it does not do

- btfkit does not talk to the kernel's BPF system call. It cannot load BTF,
  programs or maps into the kernel, and it cannot pin objects.
- btfkit has no model of BPF instructions. It computes CO-RE fixups but does
  not rewrite instruction streams with them.
- btfkit provides no command-line tool.

## Running the tests

```
pip install .[test]
pytest
```