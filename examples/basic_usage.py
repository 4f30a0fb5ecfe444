#!/usr/bin/env python3
"""
Basic usage examples for Arbiter.

Needs provider credentials in the environment (or a .env file), for
example ANTHROPIC_API_KEY, GROQ_API_KEY and DEEPSEEK_API_KEY.
"""

import asyncio

from arbiter import ChatService, CompletionGateway, Message
from arbiter.council.ranking import PeerReviewEngine
from arbiter.streaming.channel import CompleteEvent, ErrorEvent, TokenEvent, WindTunnel


async def single_model():
    """Send a prompt to one model."""
    print("\n=== Single Model ===\n")

    service = ChatService(CompletionGateway())
    response = await service.single("deepseek/deepseek-chat", [Message.user("What is a monad?")])

    reply = response.replies[0]
    print(f"{reply.model_name}: {reply.content}")
    print(f"Cost: ${reply.cost_stats.cost:.6f} (saved {reply.cost_stats.saved_percent:.0f}%)")


async def auto_route():
    """Let the classifier pick the model."""
    print("\n=== Auto Routing ===\n")

    service = ChatService(CompletionGateway())
    response = await service.auto([Message.user("What is the capital of France?")])

    print(f"Routed via {response.routing.route_label} to {response.routing.model_name}")
    print(response.replies[0].content)


async def all_models():
    """Fan out to the whole roster."""
    print("\n=== All Models ===\n")

    service = ChatService(CompletionGateway())
    response = await service.all_models([Message.user("Explain recursion in one sentence.")])

    for reply in response.replies:
        status = "failed" if reply.error else f"{reply.cost_stats.total_ms}ms"
        print(f"{reply.model_name:30} {status}")


async def peer_review():
    """Blind-rank the roster's answers and read the chairman synthesis."""
    print("\n=== Peer Review ===\n")

    engine = PeerReviewEngine(CompletionGateway())
    report = await engine.compete_single(
        [Message.user("Why is the sky blue?")],
        original_model="anthropic/claude-sonnet-4.5",
    )

    for entry in report.results:
        marker = " (original)" if entry.is_original else ""
        print(f"{entry.place}. {entry.model_name}{marker}: {entry.average_rank}")
    print(f"\n{report.chairman_synthesis or 'No synthesis'}")


async def wind_tunnel():
    """Stream one model token by token."""
    print("\n=== Wind Tunnel ===\n")

    tunnel = WindTunnel(CompletionGateway())
    async for event in tunnel.stream("meta-llama/llama-4-maverick:groq", [Message.user("Count to ten.")]):
        if isinstance(event, TokenEvent):
            print(event.content, end="", flush=True)
        elif isinstance(event, CompleteEvent):
            print(f"\n\n{event.latency}ms, {event.output_tokens} tokens, ${event.cost:.6f}")
        elif isinstance(event, ErrorEvent):
            print(f"\n{event.error}")


async def main():
    await single_model()
    await auto_route()
    await all_models()
    await peer_review()
    await wind_tunnel()


if __name__ == "__main__":
    asyncio.run(main())
