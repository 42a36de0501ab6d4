"""
vstore.cli
==========

Command-line access to a store:

    python -m vstore.cli --uri sqlite:///store.db put alice 1
    python -m vstore.cli --uri sqlite:///store.db prove alice --out alice.proof.json
    python -m vstore.cli verify alice.proof.json alice 1 --root 0x...
    python -m vstore.cli --uri sqlite:///store.db history

Keys and values are UTF-8 text unless `--hex` is given. The backend URI comes
from `--uri`, else from the config layer (file / VSTORE_* env / defaults).
`--json` switches every command to machine-readable output.
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, NoReturn, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from . import config as vconfig
from . import logging as vlog
from .engine import Engine
from .epoch import find_breaks, verify_chain
from .errors import EncodingError, VStoreError
from .smt.proof import Proof
from .utils.bytes import from_hex, to_hex
from .version import __version__


@dataclass
class _State:
    uri: Optional[str] = None
    config_file: Optional[Path] = None
    hex: bool = False
    json: bool = False
    _engine: Optional[Engine] = None

    def engine(self) -> Engine:
        if self._engine is None:
            overrides: Dict[str, Any] = {"backend": {"uri": self.uri}} if self.uri else {}
            cfg = vconfig.load(self.config_file, **overrides)
            vlog.configure_from_config(cfg)
            self._engine = Engine.from_config(cfg)
        return self._engine

    def close(self) -> None:
        if self._engine is not None:
            self._engine.close()
            self._engine = None


def _state(ctx: typer.Context) -> _State:
    return ctx.ensure_object(_State)


def _arg(st: _State, s: str) -> bytes:
    return from_hex(s) if st.hex else s.encode("utf-8")


def _show(st: _State, data: bytes) -> str:
    if st.hex:
        return to_hex(data)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return to_hex(data)


def _emit(st: _State, payload: Dict[str, Any], human: str) -> None:
    if st.json:
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
    else:
        typer.echo(human)


def _fail(st: _State, err: Exception, code: int = 1) -> NoReturn:
    if st.json:
        body = err.to_dict() if isinstance(err, VStoreError) else {"message": str(err)}
        typer.echo(json.dumps({"ok": False, "error": body}, sort_keys=True))
    else:
        Console(stderr=True).print(f"[red]error:[/red] {err}")
    raise typer.Exit(code)


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"vstore {__version__}")
        raise typer.Exit(0)


def build_app() -> typer.Typer:
    app = typer.Typer(
        name="vstore",
        help="Verifiable key-value store: commit, read, prove and audit.",
        no_args_is_help=True,
        add_completion=False,
    )

    @app.callback()
    def _main(
        ctx: typer.Context,
        uri: Optional[str] = typer.Option(None, "--uri", "-u", help="Backend URI (memory://, sqlite:///path.db)"),
        config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML/JSON config file"),
        hex_io: bool = typer.Option(False, "--hex", help="Keys and values are hex strings"),
        json_out: bool = typer.Option(False, "--json", help="Machine-readable output"),
        version: bool = typer.Option(
            False, "--version", "-V", help="Print version and exit", is_eager=True, callback=_print_version
        ),
    ) -> None:
        st = _state(ctx)
        st.uri, st.config_file, st.hex, st.json = uri, config_file, hex_io, json_out
        ctx.call_on_close(st.close)

    @app.command("head")
    def head_cmd(ctx: typer.Context) -> None:
        """Show the head epoch."""
        st = _state(ctx)
        try:
            e = st.engine().head()
        except VStoreError as err:
            _fail(st, err)
        _emit(st, e.to_dict(), f"epoch {e.number} root {to_hex(e.root)}")

    @app.command("put")
    def put_cmd(
        ctx: typer.Context,
        key: str = typer.Argument(...),
        value: str = typer.Argument(...),
        metadata: str = typer.Option("", "--metadata", "-m", help="Epoch metadata (text)"),
    ) -> None:
        """Write one key in a new epoch."""
        st = _state(ctx)
        try:
            e = st.engine().put(_arg(st, key), _arg(st, value), metadata.encode("utf-8"))
        except VStoreError as err:
            _fail(st, err)
        _emit(st, e.to_dict(), f"epoch {e.number} root {to_hex(e.root)}")

    @app.command("delete")
    def delete_cmd(ctx: typer.Context, key: str = typer.Argument(...)) -> None:
        """Delete one key in a new epoch."""
        st = _state(ctx)
        try:
            e = st.engine().delete(_arg(st, key))
        except VStoreError as err:
            _fail(st, err)
        _emit(st, e.to_dict(), f"epoch {e.number} root {to_hex(e.root)}")

    @app.command("get")
    def get_cmd(
        ctx: typer.Context,
        key: str = typer.Argument(...),
        epoch: Optional[int] = typer.Option(None, "--epoch", "-e"),
    ) -> None:
        """Read a value (exit code 1 when absent)."""
        st = _state(ctx)
        try:
            v = st.engine().get_value(_arg(st, key), epoch)
        except VStoreError as err:
            _fail(st, err)
        if v is None:
            _emit(st, {"ok": True, "found": False}, "(not found)")
            raise typer.Exit(1)
        _emit(st, {"ok": True, "found": True, "value": to_hex(v)}, _show(st, v))

    @app.command("prove")
    def prove_cmd(
        ctx: typer.Context,
        key: str = typer.Argument(...),
        epoch: Optional[int] = typer.Option(None, "--epoch", "-e"),
        out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write proof here (.cbor = binary, else JSON)"),
    ) -> None:
        """Build an inclusion / non-inclusion proof."""
        st = _state(ctx)
        try:
            eng = st.engine()
            ep = eng.resolve(epoch)
            proof = eng.prove(_arg(st, key), ep)
        except VStoreError as err:
            _fail(st, err)
        doc = {"epoch": ep.number, "root": to_hex(ep.root), "proof": proof.to_dict()}
        if out is not None:
            if out.suffix.lower() == ".cbor":
                out.write_bytes(proof.to_bytes())
            else:
                out.write_text(json.dumps(doc, indent=2, sort_keys=True), encoding="utf-8")
        typer.echo(json.dumps(doc, indent=2, sort_keys=True))

    @app.command("verify")
    def verify_cmd(
        ctx: typer.Context,
        proof_file: Path = typer.Argument(..., help="Proof file (.cbor or JSON from `prove`)"),
        key: str = typer.Argument(...),
        value: Optional[str] = typer.Argument(None, help="Claimed value; omit to check absence"),
        root: Optional[str] = typer.Option(None, "--root", "-r", help="Root (hex); defaults to the file's root, then the head"),
    ) -> None:
        """Verify a proof offline against a root."""
        st = _state(ctx)
        try:
            raw = proof_file.read_bytes()
            file_root = None
            if proof_file.suffix.lower() == ".cbor":
                proof = Proof.from_bytes(raw)
            else:
                doc = json.loads(raw.decode("utf-8"))
                if not isinstance(doc, dict):
                    raise EncodingError("proof file must hold a JSON object", type=type(doc).__name__)
                proof = Proof.from_dict(doc["proof"] if "proof" in doc else doc)
                file_root = doc.get("root")
            if root is not None:
                root_b = from_hex(root)
            elif file_root is not None:
                root_b = from_hex(file_root)
            else:
                root_b = st.engine().head().root
            key_b = _arg(st, key)
            claimed = None if value is None else _arg(st, value)
        except (OSError, ValueError, TypeError, KeyError, VStoreError) as err:
            _fail(st, err, code=2)
        ok = Engine.verify(proof, key_b, claimed, root_b)
        _emit(st, {"ok": ok, "root": to_hex(root_b)}, "valid" if ok else "INVALID")
        if not ok:
            raise typer.Exit(1)

    @app.command("history")
    def history_cmd(
        ctx: typer.Context,
        start: int = typer.Option(0, "--start"),
        end: Optional[int] = typer.Option(None, "--end"),
    ) -> None:
        """List epochs."""
        st = _state(ctx)
        try:
            epochs = st.engine().history(start, end)
        except VStoreError as err:
            _fail(st, err)
        if st.json:
            typer.echo(json.dumps([e.to_dict() for e in epochs], indent=2))
            return
        t = Table(title="Epochs", box=box.SIMPLE)
        t.add_column("#", justify="right")
        t.add_column("root")
        t.add_column("prev_root")
        t.add_column("metadata")
        for e in epochs:
            t.add_row(str(e.number), e.root.hex(), e.prev_root.hex(), _show(st, e.metadata))
        Console().print(t)

    @app.command("verify-chain")
    def verify_chain_cmd(ctx: typer.Context) -> None:
        """Check that every epoch links to its predecessor."""
        st = _state(ctx)
        try:
            epochs = st.engine().history()
        except VStoreError as err:
            _fail(st, err)
        breaks = find_breaks(epochs)
        ok = verify_chain(epochs) and not breaks
        _emit(
            st,
            {"ok": ok, "epochs": len(epochs), "breaks": breaks},
            f"chain ok ({len(epochs)} epochs)" if ok else f"chain BROKEN at {breaks}",
        )
        if not ok:
            raise typer.Exit(1)

    @app.command("keys")
    def keys_cmd(
        ctx: typer.Context,
        start: Optional[str] = typer.Option(None, "--start"),
        end: Optional[str] = typer.Option(None, "--end"),
        epoch: Optional[int] = typer.Option(None, "--epoch", "-e"),
    ) -> None:
        """List live keys in [start, end)."""
        st = _state(ctx)
        try:
            keys = list(
                st.engine().iter_keys(
                    None if start is None else _arg(st, start),
                    None if end is None else _arg(st, end),
                    epoch,
                )
            )
        except VStoreError as err:
            _fail(st, err)
        if st.json:
            typer.echo(json.dumps([to_hex(k) for k in keys]))
            return
        for k in keys:
            typer.echo(_show(st, k))

    return app


app = build_app()


def main(argv: Optional[list[str]] = None) -> int:
    app(args=argv if argv is not None else sys.argv[1:], prog_name="vstore")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
