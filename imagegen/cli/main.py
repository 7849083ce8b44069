#!/usr/bin/env python3
"""ImageGen CLI - Gemini image generation from the command line.

Usage:
    imagegen serve [--host H] [--port P]     - Run the HTTP server
    imagegen generate --prompt "..." [-i IMG] - Generate images
    imagegen upscale --image-token ... ...   - Fetch a full-size image
    imagegen status                          - Show whether cookies are loaded
    imagegen login                           - Log in through a browser window
"""

import argparse
import asyncio
import functools
import sys
from pathlib import Path


async def cmd_generate(args):
    """Generate images and save them to the output directory."""
    import aiohttp

    from imagegen.core.exceptions import ImageGenException
    from imagegen.core.log import log
    from imagegen.core.session import create_cookie_store
    from imagegen.core.utils import save_image
    from imagegen.providers.gemini.client import AttachmentInput, GeminiClient

    attachments = []
    for image_path in args.image or []:
        path = Path(image_path)
        if not path.exists():
            print(f"Error: Image not found: {image_path}")
            sys.exit(1)
        attachments.append(AttachmentInput(data=path.read_bytes(), file_name=path.name))

    prompt = args.prompt
    if args.aspect_ratio:
        prompt = f"{prompt}. Use a {args.aspect_ratio} aspect ratio."

    store = create_cookie_store()
    output_dir = Path(args.output)

    try:
        async with GeminiClient(store) as client:
            result = await client.generate(prompt, attachments)
            for err in result.attachment_errors:
                log(f"Skipped {err.file_name}: {err.error}", "⚠")

            outcomes = await client.download_all(result.images)
    except (ImageGenException, aiohttp.ClientError, asyncio.TimeoutError) as e:
        log(str(e) or type(e).__name__, "✕")
        sys.exit(1)

    response = result.response
    log(f"Conversation: {response.conversation_id}  Response: {response.response_id}", "○")
    saved = 0
    for outcome in outcomes:
        if not outcome.ok:
            continue
        path = save_image(outcome.data, output_dir, outcome.image.mime)
        saved += 1
        token = "yes" if outcome.image.can_upscale else "no"
        log(f"Saved {path} (upscalable: {token})", "✓")
        if outcome.image.can_upscale and args.verbose:
            print(f"    --image-token {outcome.image.image_token}")
            print(f"    --chunk-id {outcome.image.response_chunk_id}")

    if not saved:
        log("No images could be downloaded", "✕")
        sys.exit(1)


async def cmd_upscale(args):
    """Request and download the full-size rendition of a generated image."""
    import aiohttp

    from imagegen.core.exceptions import ImageGenException
    from imagegen.core.log import log
    from imagegen.core.session import create_cookie_store
    from imagegen.providers.gemini.client import GeminiClient

    store = create_cookie_store()
    try:
        async with GeminiClient(store) as client:
            url = await client.upscale(
                args.image_token, args.chunk_id, args.conversation_id, args.response_id, args.prompt or ""
            )
            data = await client.fetch(url)
    except (ImageGenException, aiohttp.ClientError, asyncio.TimeoutError) as e:
        log(str(e) or type(e).__name__, "✕")
        sys.exit(1)

    output = Path(args.output)
    output.write_bytes(data)
    log(f"Saved to {output} ({len(data) // 1024}KB)", "✓")


def cmd_status(_args):
    from imagegen.core.session import PSID, PSIDTS, create_cookie_store

    store = create_cookie_store()
    print(f"Authenticated: {store.has_required_cookies()}")
    for name in (PSID, PSIDTS):
        print(f"  {name}: {'set' if store.get(name) else 'missing'}")


async def cmd_login(args):
    """Run a login session and wait for it to finish."""
    from imagegen.core.exceptions import LoginException
    from imagegen.core.log import log
    from imagegen.core.session import create_cookie_store
    from imagegen.login_stream import AuthSessionManager, PlaywrightLoginBrowser

    store = create_cookie_store()
    factory = functools.partial(PlaywrightLoginBrowser.launch, headless=args.headless)
    manager = AuthSessionManager(store, browser_factory=factory, timeout=args.timeout)

    if args.restore and await manager.restore_session():
        return

    try:
        await manager.start()
        log("Complete the Google sign-in in the browser window...", "○")
        await manager.wait()
        log("Login complete", "★")
    except LoginException as e:
        log(str(e), "✕")
        sys.exit(1)
    finally:
        await manager.stop()


def cmd_serve(args):
    from aiohttp import web

    from imagegen.core.config import get_setting
    from imagegen.core.debug import cleanup_old_dumps
    from imagegen.core.session import create_cookie_store
    from imagegen.routes import create_app

    cleanup_old_dumps()
    host = args.host or get_setting("host")
    port = args.port or int(get_setting("port"))
    app = create_app(create_cookie_store())
    print(f"Gemini image server listening on http://{host}:{port}")
    web.run_app(app, host=host, port=port, print=None)


def main():
    parser = argparse.ArgumentParser(
        description="ImageGen CLI - Gemini image generation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  imagegen serve --port 3000
  imagegen generate -p "a watercolor fox" -o out/
  imagegen generate -p "make it night" -i photo.png -a 16:9
  imagegen upscale --image-token T --chunk-id rc_x --conversation-id c_x --response-id r_x
  imagegen login --restore
""",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Port")

    gen_parser = subparsers.add_parser("generate", help="Generate images")
    gen_parser.add_argument("-p", "--prompt", required=True, help="Prompt text")
    gen_parser.add_argument("-i", "--image", metavar="PATH", action="append", help="Input image (repeatable)")
    gen_parser.add_argument("-a", "--aspect-ratio", help="Aspect ratio hint, e.g. 16:9")
    gen_parser.add_argument("-o", "--output", default="generated", help="Output directory")
    gen_parser.add_argument("-v", "--verbose", action="store_true", help="Print upscale identifiers")

    up_parser = subparsers.add_parser("upscale", help="Download a full-size image")
    up_parser.add_argument("--image-token", required=True)
    up_parser.add_argument("--chunk-id", required=True, help="Response chunk id (rc_...)")
    up_parser.add_argument("--conversation-id", required=True)
    up_parser.add_argument("--response-id", required=True)
    up_parser.add_argument("-p", "--prompt", help="Original prompt")
    up_parser.add_argument("-o", "--output", default="fullsize.png", help="Output file path")

    subparsers.add_parser("status", help="Show whether session cookies are loaded")

    login_parser = subparsers.add_parser("login", help="Start a remote login session")
    login_parser.add_argument("--timeout", type=float, help="Seconds to wait for login")
    login_parser.add_argument("--restore", action="store_true", help="Try the browser profile first")
    login_parser.add_argument("--headless", action="store_true", help="Run the login browser headless")

    args = parser.parse_args()

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "generate":
        asyncio.run(cmd_generate(args))
    elif args.command == "upscale":
        asyncio.run(cmd_upscale(args))
    elif args.command == "status":
        cmd_status(args)
    elif args.command == "login":
        asyncio.run(cmd_login(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
