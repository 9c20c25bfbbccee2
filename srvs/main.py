import argparse
import json
import logging
import time
from logging.handlers import RotatingFileHandler

from . import config, db, scheduler

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'


def configure_logging(level=logging.INFO):
    """Rotating file log in the configured log directory plus console output."""
    logdir = config.get_log_dir()
    logdir.mkdir(parents=True, exist_ok=True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = RotatingFileHandler(str(logdir / 'srvs.log'), maxBytes=5_000_000, backupCount=5)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console)


def build_parser():
    parser = argparse.ArgumentParser(prog='srvs')
    sub = parser.add_subparsers(dest='cmd')
    webp = sub.add_parser('web', help='Run the backend REST API')
    webp.add_argument('--host', default='127.0.0.1')
    webp.add_argument('--port', type=int, default=5000)
    mockp = sub.add_parser('mock-api', help='Run the mock panel API')
    mockp.add_argument('--host', default='127.0.0.1')
    mockp.add_argument('--port', type=int, default=3001)
    credp = sub.add_parser('credentials-set')
    credp.add_argument('workspace', choices=scheduler.WORKSPACES)
    credp.add_argument('--api-key', required=True)
    credp.add_argument('--base-url', required=True)
    credp.add_argument('--user-id')
    autop = sub.add_parser('auto-sync', help='Run auto-sync in the foreground until interrupted')
    autop.add_argument('workspace', choices=scheduler.WORKSPACES)
    syncp = sub.add_parser('sync', help='Sync a workspace once')
    syncp.add_argument('workspace', choices=scheduler.WORKSPACES)
    sub.add_parser('status')
    resp = sub.add_parser('respondents')
    resp.add_argument('workspace', choices=scheduler.WORKSPACES)
    resp.add_argument('--json', action='store_true', help='Print full records as JSON')
    workerp = sub.add_parser('proof-worker')
    workerp.add_argument('--interval', type=int, default=300)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    db.init_db()
    if args.cmd == 'credentials-set':
        db.set_credentials(args.workspace, args.api_key, args.base_url.rstrip('/'), args.user_id)
        print('credentials stored for', args.workspace)
        return 0
    if args.cmd == 'status':
        for ws in scheduler.WORKSPACES:
            w = db.get_workspace(ws)
            configured = 'yes' if w['api_key'] and w['base_url'] else 'no'
            print(f"{ws}: credentials={configured} auto_sync={'on' if w['auto_sync_enabled'] else 'off'} "
                  f"respondents={db.count_respondents(ws)} last_sync={w['last_sync_at'] or 'never'}")
        return 0
    if args.cmd == 'respondents':
        rows = db.list_respondents(args.workspace)
        if args.json:
            print(json.dumps(rows, indent=2))
            return 0
        for r in rows:
            print(f"{r['id']}  proof={r['proofStatus']}  result={r['queryResult']}  query={r['query'] or '-'}")
        return 0
    if args.cmd == 'sync':
        reg = scheduler.SchedulerRegistry()
        result = reg.get(args.workspace).trigger_sync()
        if result.success:
            print(f'synced {args.workspace}: {result.added_count} new (panel reported {result.reported_count})')
            return 0
        print('sync failed:', result.error)
        return 1
    if args.cmd == 'auto-sync':
        reg = scheduler.get_registry()
        if not reg.set_enabled(args.workspace, True):
            print('cannot enable auto-sync:', reg.status(args.workspace)['lastError'])
            return 1
        print(f'auto-sync on for {args.workspace}; Ctrl-C to stop')
        try:
            while True:
                time.sleep(1)
        except (KeyboardInterrupt, SystemExit):
            print('Shutting down')
        finally:
            reg.set_enabled(args.workspace, False)
            reg.dispose()
        return 0
    if args.cmd == 'proof-worker':
        from .workers.proof_status import run_loop, run_once
        run_once()
        try:
            run_loop(interval_seconds=args.interval)
        except (KeyboardInterrupt, SystemExit):
            print('Proof worker shutting down')
        return 0
    if args.cmd == 'web':
        from .ui import app
        scheduler.get_registry()
        app.run(host=args.host, port=args.port)
        return 0
    if args.cmd == 'mock-api':
        from .mock_api import app
        app.run(host=args.host, port=args.port)
        return 0
    parser.print_help()
    return 2


if __name__ == '__main__':
    configure_logging()
    raise SystemExit(main())
