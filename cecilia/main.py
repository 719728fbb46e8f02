"""
Cecilia — command console for the automation core.

Wires every component explicitly (no module-level service singletons),
connects to the automation agent and then reads commands from stdin:

    open chrome               -> resolve + run an automation task
    send an email to Sam      -> intent-based task
    screenshot [selector]     -> capture the screen through the agent
    stop                      -> stop every running task
    exit / quit / EOF         -> disconnect and leave
"""

import logging
import random
import sys

from cecilia.brain.agent_connection import AgentConnection, SimulatedAgent
from cecilia.brain.app_registry import KeywordResolver
from cecilia.brain.errors import AutomationError
from cecilia.brain.orchestrator import Orchestrator
from cecilia.brain.task_engine import TaskLifecycleEngine, TaskOptions
from cecilia.config import AGENT_API_KEY, LOG_LEVEL, PERSONALITY
from cecilia.personality import ConversationState, PersonalityResponder, load_personality
from cecilia.utils.clock import SYSTEM_CLOCK

logger = logging.getLogger("cecilia")


def build_orchestrator(speak=None) -> Orchestrator:
    """Construct the full component graph with production defaults."""
    rng = random.Random()
    personality = load_personality(PERSONALITY)

    transport = SimulatedAgent(clock=SYSTEM_CLOCK, rng=rng)
    connection = AgentConnection(transport, clock=SYSTEM_CLOCK)
    engine = TaskLifecycleEngine(connection, clock=SYSTEM_CLOCK)
    responder = PersonalityResponder(clock=SYSTEM_CLOCK, rng=rng, jokes=personality.jokes)

    return Orchestrator(
        resolver=KeywordResolver.from_file(),
        connection=connection,
        engine=engine,
        responder=responder,
        conversation=ConversationState.from_config(personality, now=SYSTEM_CLOCK.now()),
        speak=speak,
    )


def _print_progress(progress: float) -> None:
    print(f"  ... {progress:.0f}%", flush=True)


def run_console(orchestrator: Orchestrator, lines) -> None:
    """Process commands until EOF or an exit word. Errors never end the loop."""
    for line in lines:
        command = line.strip()
        if not command:
            continue
        lowered = command.lower()

        if lowered in ("exit", "quit"):
            break

        try:
            if lowered == "stop":
                stopped = orchestrator.stop_all()
                print(f"Stopped {stopped} task(s).")
            elif lowered.startswith("screenshot"):
                selector = command[len("screenshot"):].strip() or None
                image = orchestrator.capture_screen(selector)
                print(f"Captured {len(image)} bytes of screen data.")
            else:
                outcome = orchestrator.handle_command(command, TaskOptions(retries=1, on_progress=_print_progress))
                if outcome.url:
                    print(f"(fallback) {outcome.url}")
        except AutomationError as e:
            logger.error("Command %r failed: %s", command, e)
            print(f"Sorry, I couldn't do that: {e}")


def main() -> int:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="[Cecilia] %(asctime)s %(name)s %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    orchestrator = build_orchestrator(speak=print)

    if AGENT_API_KEY:
        try:
            orchestrator.connect(AGENT_API_KEY)
        except AutomationError as e:
            logger.warning("Could not connect to the automation agent: %s", e)
    else:
        logger.warning("CECILIA_AGENT_API_KEY not set, running without the automation agent")

    print(orchestrator.get_welcome_message())
    try:
        run_console(orchestrator, sys.stdin)
    except KeyboardInterrupt:
        pass
    finally:
        orchestrator.stop_all()
        orchestrator.disconnect()
        logger.info("Goodbye.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
