import sys

import dnmeta
import dnmeta.errors


# heading
H="===="
# indent
I="    "


def main(fpath: str):
    try:
        pe = dnmeta.dnPE(fpath, strict_tables=False)
    except dnmeta.errors.dnError as e:
        print(H, "ERROR:", e)
        return

    if not pe.net:
        return

    warns = pe.get_warnings()
    if warns:
        print(H, "WARNINGS:")
        for w in warns:
            print(I, w)
    if pe.net.mdtables.truncated_at is not None:
        print(H, "tables decoded up to unknown table", pe.net.mdtables.truncated_at)
    if pe.net.mdtables.MethodDef is None:
        return
    for i, m in enumerate(pe.net.mdtables.MethodDef, 1):
        print(H, m.Name)
        print(I, f"row {i} rva 0x{m.Rva:08x}")
        s = I
        for name, val in m.Flags:
            if val:
                s += f" {name}"
        print(s)
    try:
        print(H, "entry point:", pe.net.get_entry_point())
    except dnmeta.errors.dnResolutionError as e:
        print(H, "entry point:", e)


if __name__ == "__main__":
    for fpath in sys.argv[1:]:
        print("----------", fpath)
        main(fpath)
