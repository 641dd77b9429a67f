#!/usr/bin/env python3
"""
Demo: step-by-step streaming with cancellation.

This demonstrates:
- Starting a session and pulling one fragment per step
- Two sessions interleaved on one model
- Cancelling a session from another thread

Usage:
    python examples/stream_demo.py models/qwen2-0_5b-instruct-q4_k_m.gguf
"""

import sys
import threading
import time
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from stepgen import StreamingGenerator
from stepgen.utils import setup_logging


def run_session(generator, session_id):
    """Step a session until its final response, printing fragments."""
    while True:
        output = generator.step(session_id)
        if output is None:
            print("\n[cancelled]")
            return None
        if output.is_final:
            print(f"\n[{output.stop_reason.value}]")
            return output.text
        print(output.text, end="", flush=True)


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    setup_logging("WARNING")

    print("=" * 60)
    print("stepgen Demo: Streaming Sessions")
    print("=" * 60)

    with StreamingGenerator.from_model(sys.argv[1], n_ctx=2048) as generator:
        # 1. One session, one token per step
        print("\n1. The sky is ...")
        session_id = generator.start("The sky is", max_tokens=16)
        run_session(generator, session_id)
        generator.release(session_id)

        # 2. Interleaved sessions
        print("\n2. Interleaved sessions")
        first = generator.start("The capital of France is", max_tokens=8)
        second = generator.start("Water boils at", max_tokens=8)
        texts = {}
        while len(texts) < 2:
            for session_id in (first, second):
                if session_id in texts:
                    continue
                output = generator.step(session_id)
                if output.is_final:
                    texts[session_id] = output.text
        for session_id, text in texts.items():
            print(f"   session {session_id}: {text!r}")
            generator.release(session_id)

        # 3. Cancellation from another thread
        print("\n3. Cancel after half a second")
        session_id = generator.start("Once upon a time", max_tokens=500)
        timer = threading.Timer(0.5, generator.cancel, args=(session_id,))
        timer.start()
        started = time.time()
        run_session(generator, session_id)
        print(f"   stopped after {time.time() - started:.2f}s")
        generator.release(session_id)

    print("\n" + "=" * 60)
    print("Demo complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
