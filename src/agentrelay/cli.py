"""agentrelay CLI

コマンドラインインターフェース。
"""

import argparse
import logging
import sys

from .core.msgfmt import AgentType


def main():
    """メインエントリーポイント"""
    parser = argparse.ArgumentParser(
        description="agentrelay - CLIエージェントの HTTP/SSE API",
        prog="agentrelay",
    )

    subparsers = parser.add_subparsers(dest="command", help="利用可能なコマンド")

    # server コマンド
    server_parser = subparsers.add_parser("server", help="APIサーバーを起動")
    server_parser.add_argument("--config", help="設定ファイルパス")
    server_parser.add_argument("--host", help="バインドするホスト")
    server_parser.add_argument("--port", type=int, help="ポート番号")
    server_parser.add_argument("--target", help="エージェントが動いている tmux ターゲット")
    server_parser.add_argument(
        "--type",
        choices=[t.value for t in AgentType],
        help="エージェント種別",
    )
    server_parser.add_argument(
        "--backend",
        choices=["terminal", "session"],
        help="端末差分 (terminal) か REST セッション (session) か",
    )
    server_parser.add_argument("--session-url", help="セッションバックエンドのURL")

    # status コマンド
    status_parser = subparsers.add_parser("status", help="起動中サーバーの状態を表示")
    status_parser.add_argument("--url", default="http://localhost:3284", help="サーバーURL")

    args = parser.parse_args()

    if args.command == "server":
        run_server(args)
    elif args.command == "status":
        run_status(args)
    else:
        parser.print_help()
        sys.exit(1)


def apply_server_overrides(settings, args) -> None:
    """コマンドライン引数で設定を上書き"""
    if args.host:
        settings.server.host = args.host
    if args.port:
        settings.server.port = args.port
    if args.target:
        settings.agent.tmux_target = args.target
    if args.type:
        settings.agent.type = args.type
    if args.backend:
        settings.agent.backend = args.backend
    if args.session_url:
        settings.agent.session_url = args.session_url


def run_server(args):
    """APIサーバーを起動"""
    import uvicorn

    from .core import reload_settings

    settings = reload_settings(args.config)
    apply_server_overrides(settings, args)

    if settings.agent.backend == "terminal" and not settings.agent.tmux_target:
        print("エラー: --target で tmux ターゲットを指定してください", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=settings.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    uvicorn.run(
        "agentrelay.api:app",
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.logging.level.lower(),
    )


def run_status(args):
    """起動中サーバーの状態を表示"""
    import httpx

    base = args.url.rstrip("/")
    try:
        status = httpx.get(f"{base}/status", timeout=5).raise_for_status().json()
        messages = httpx.get(f"{base}/messages", timeout=5).raise_for_status().json()
    except httpx.HTTPError as e:
        print(f"エラー: サーバーに接続できません: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"状態: {status['status']}")
    print(f"メッセージ数: {len(messages['messages'])}")
    if messages["messages"]:
        last = messages["messages"][-1]
        print(f"\n最新 ({last['role']}):")
        print(last["content"])


if __name__ == "__main__":
    main()
