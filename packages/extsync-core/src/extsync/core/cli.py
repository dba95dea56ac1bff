import argparse
import json
import sys

from extsync.core.extension import extension_status
from extsync.core.observability import configure_logging
from extsync.core.overrides import FileOverrideSink
from extsync.core.reconcile import LifecycleState, load_extension_resource, reconcile
from extsync.core.runtime.secrets import load_secret_lookup
from extsync.core.runtime.settings import load_settings


def _settings(args):
    overrides = {}
    if getattr(args, "output_root", None):
        overrides["output_root"] = args.output_root
    if getattr(args, "secrets_dir", None):
        overrides["secrets_dir"] = args.secrets_dir
    return load_settings(overrides or None)


def main(argv=None) -> int:
    argv = argv or sys.argv[1:]
    parser = argparse.ArgumentParser(prog="extsync", description="extsync-core CLI")
    sp = parser.add_subparsers(dest="cmd", required=True)

    recp = sp.add_parser("reconcile", help="Sync one extension resource into the output root")
    recp.add_argument("--resource", required=True, help="Path to the extension resource YAML")
    recp.add_argument("--output-root", default=None, help="Override output root (defaults to EXTSYNC_OUTPUT_ROOT or settings)")
    recp.add_argument("--secrets-dir", default=None, help="Mounted secrets directory (<ns>/<name>/<key>)")
    recp.add_argument("--json", action="store_true", help="Output machine-readable JSON")

    statp = sp.add_parser("status", help="Show the stored snapshot of an extension (no remote access)")
    statp.add_argument("--resource", required=True, help="Path to the extension resource YAML")
    statp.add_argument("--output-root", default=None, help="Override output root (defaults to EXTSYNC_OUTPUT_ROOT or settings)")
    statp.add_argument("--json", action="store_true", help="Output machine-readable JSON")

    args = parser.parse_args(argv)
    settings = _settings(args)

    if args.cmd == "reconcile":
        configure_logging(settings)
        resource = load_extension_resource(args.resource)
        res = reconcile(
            resource,
            settings=settings,
            secrets=load_secret_lookup(settings),
            sink=FileOverrideSink(settings.override_manifest_path),
        )
        cond = res.resource.status.conditions[0] if res.resource.status.conditions else None
        out = {
            "resource": args.resource,
            "extension": res.resource.name,
            "state": res.state.value,
            "ready": res.ready,
            "message": cond.message if cond else "",
            "changed": bool(res.outcome.changed) if res.outcome else False,
            "files": list(res.outcome.files) if res.outcome else [],
            "finalizers": list(res.resource.metadata.finalizers),
        }
        if args.json:
            print(json.dumps(out, ensure_ascii=False))
        else:
            if res.error is not None:
                print(f"FAILED: {res.resource.name} state={res.state.value}: {res.error}")
            else:
                status = "CHANGED" if out["changed"] else "UNCHANGED"
                print(f"{status}: {res.resource.name} state={res.state.value} {out['message']}".rstrip())
        if res.error is not None:
            return 2
        return 0 if res.ready or res.state is not LifecycleState.ACTIVE else 2

    if args.cmd == "status":
        resource = load_extension_resource(args.resource)
        st = extension_status(resource.name, settings=settings)
        out = {
            "resource": args.resource,
            "extension": st.name,
            "synced": st.synced,
            "revisions": list(st.snapshot.revisions),
            "files": list(st.snapshot.files),
            "owned_files": list(st.owned_files),
        }
        if args.json:
            print(json.dumps(out, ensure_ascii=False))
        else:
            print(f"extension={st.name} synced={'yes' if st.synced else 'no'} files={len(st.snapshot.files)}")
            for rev in st.snapshot.revisions:
                print(f"revision={rev}")
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
