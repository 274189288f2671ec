"""
retrocsp CLI
"""
import sys
import argparse
import json

from retrocsp.logging_config import setup_logging
from retrocsp.policy.model import ContentSecurityPolicy, parse_policies
from retrocsp.policy.sources import allows_all_inline_scripts
from retrocsp.retrofit.engine import retrofit_csp
from retrocsp.retrofit.plans import RetrofitterKind
from retrocsp.runtime.enforcer import RetrofitEnforcer, Verdict

KIND_CHOICES = [kind.value for kind in RetrofitterKind]


def build_parser():
    parser = argparse.ArgumentParser(
        prog="retrocsp",
        description="retrocsp - backport strict-dynamic, unsafe-hashes and navigate-to",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Rewrite a policy and show the runtime plans
  python -m retrocsp retrofit "script-src 'strict-dynamic' 'nonce-abc' https:"

  # Skip one retrofitter
  python -m retrocsp retrofit "navigate-to 'self'" --disable navigate-to

  # Would a navigation be allowed?
  python -m retrocsp check-url https://evil.test/ --policy "navigate-to 'self'" --origin https://example.com

  # Would an inline event handler run?
  python -m retrocsp check-script "alert(1)" --policy "script-src 'unsafe-hashes' 'sha256-...'"

  # Run the retrofitting reverse proxy
  python -m retrocsp serve
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    retrofit_parser = subparsers.add_parser('retrofit', help='Rewrite a policy for older browsers')
    retrofit_parser.add_argument('policy', help='Content-Security-Policy header value')
    retrofit_parser.add_argument('--disable', action='append', choices=KIND_CHOICES, default=[],
                                 help='Retrofitter to skip (repeatable)')

    url_parser = subparsers.add_parser('check-url', help='Check a navigation target against navigate-to')
    url_parser.add_argument('url', help='Navigation target')
    url_parser.add_argument('--policy', required=True, help='Content-Security-Policy header value')
    url_parser.add_argument('--origin', required=True, help='Origin of the protected document')

    script_parser = subparsers.add_parser('check-script', help='Check an inline event handler against the hashes')
    script_parser.add_argument('code', help='Handler source code')
    script_parser.add_argument('--policy', required=True, help='Content-Security-Policy header value')

    serve_parser = subparsers.add_parser(
        'serve', help='Run the retrofitting reverse proxy',
        description='Run the retrofitting reverse proxy. Pages must also load a runtime that reads '
                    'the plans queued on window.__retroCSP; without it the rewritten policy is not enforced.')
    serve_parser.add_argument('--host', default='0.0.0.0', help='Interface to bind')
    serve_parser.add_argument('--port', type=int, help='Port to listen on (default: listen_port setting)')

    return parser


def main(argv=None):
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command != 'serve':
        # keep stdout for command output
        setup_logging(log_level='warning', json_format=False)

    try:
        if args.command == 'retrofit':
            return cmd_retrofit(args)
        elif args.command == 'check-url':
            return cmd_check_url(args)
        elif args.command == 'check-script':
            return cmd_check_script(args)
        elif args.command == 'serve':
            return cmd_serve(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


def _parse_policy(text):
    csp = ContentSecurityPolicy.from_string(text)
    if csp is None:
        raise ValueError(f"no policy found in {text!r}")
    return csp


def cmd_retrofit(args):
    """Execute retrofit command"""
    csp = _parse_policy(args.policy)
    enabled = [kind for kind in RetrofitterKind if kind.value not in args.disable]
    outcome = retrofit_csp(csp, enabled)

    result = {
        'header': outcome.header,
        'retrofittingNonce': outcome.csp.retrofitting_nonce,
        'plans': [plan.model_dump(mode='json', by_alias=True) for plan in outcome.plans],
    }
    print(json.dumps(result, indent=2))
    return 0


def _enforcer_for(policy, origin=''):
    outcome = retrofit_csp(_parse_policy(policy))
    return RetrofitEnforcer(outcome.plans, origin)


def cmd_check_url(args):
    """Execute check-url command"""
    decision = _enforcer_for(args.policy, args.origin).on_navigation_attempt(args.url)
    print(decision.verdict.value)
    return 0 if decision.allowed else 1


def _inline_handlers_allowed(policy):
    """Whether the unretrofitted policy itself lets inline event handlers run."""
    for parsed in parse_policies(policy):
        directive = parsed.script_attribute_directive()
        if directive is not None and not allows_all_inline_scripts(parsed[directive]):
            return False
    return True


def cmd_check_script(args):
    """Execute check-script command"""
    decision = _enforcer_for(args.policy).on_attribute_mutated('button', 'onclick', args.code)
    verdict = decision.verdict
    if verdict is Verdict.PASSTHROUGH:
        # no unsafe-hashes plan: the browser's own handling decides
        verdict = Verdict.ALLOW if _inline_handlers_allowed(args.policy) else Verdict.BLOCK
    print(verdict.value)
    return 0 if verdict is Verdict.ALLOW else 1


def cmd_serve(args):
    """Execute serve command"""
    import uvicorn

    from retrocsp.config.loader import get_settings

    port = args.port or get_settings().listen_port
    uvicorn.run("retrocsp.main:app", host=args.host, port=port)
    return 0


if __name__ == '__main__':
    sys.exit(main())
