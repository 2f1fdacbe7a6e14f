"""
Terminal chat front-end.

    python -m backend.cli [--url http://localhost:8000/api/chat] [--charts-dir charts]

Chart replies are printed as a table and written to an HTML file.
"""

import argparse
import asyncio
import logging
from pathlib import Path

from backend.config import CHAT_API_URL
from backend.services.charts import build_chart_figure, describe_chart
from backend.services.conversation import ConversationMessage, ConversationSurface, HttpChatTransport

logger = logging.getLogger(__name__)


def render(message: ConversationMessage, charts_dir: Path) -> str:
    who = "you" if message.is_user else "assistant"
    out = f"[{who}] {message.message}"
    if message.type == "chart" and message.chart_data:
        out += "\n" + describe_chart(message.chart_data)
        charts_dir.mkdir(parents=True, exist_ok=True)
        path = charts_dir / f"chart-{message.id[:8]}.html"
        fig = build_chart_figure(message.chart_data, message.chart_title or "", message.chart_type)
        fig.write_html(path)
        out += f"\n(chart saved to {path})"
    return out


async def run(url: str, charts_dir: Path) -> None:
    surface = ConversationSurface(HttpChatTransport(url))
    print(render(surface.transcript[0], charts_dir))

    while True:
        try:
            text = await asyncio.to_thread(input, "> ")
        except (EOFError, KeyboardInterrupt):
            break
        if text.strip() in {"exit", "quit"}:
            break
        reply = await surface.submit(text)
        if reply is not None:
            print(render(reply, charts_dir))


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with the investor metrics assistant.")
    parser.add_argument("--url", default=CHAT_API_URL)
    parser.add_argument("--charts-dir", default="charts", type=Path)
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING)
    asyncio.run(run(args.url, args.charts_dir))


if __name__ == "__main__":
    main()
