"""
Console Test Harness for the Visual Turing Test

Walks one tester through every category in the terminal, using the same
SessionStore and QuestionFlowController as the web app.
"""

import logging
import sys

from vtt.config import AppConfig
from vtt.core.image_selector import ImageSelector
from vtt.core.question_flow import FlowState, QuestionFlowController
from vtt.core.session_store import SessionStore
from vtt.persistence import ExportArchive, LocalStorage
from vtt.results import IllegalCommand
from vtt.utils.display_helpers import format_export_summary

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"quit", "exit", "stop"}
REAL_INPUTS = {"r", "real", "y", "yes"}
FAKE_INPUTS = {"f", "fake", "n", "no"}


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def ask_profile(store):
    """Prompt for tester identity until supervisor and tester are set"""
    while not store.has_tester_identity():
        print("Tester profile (supervisor and tester are required)")
        fields = {}
        for name in ('supervisor', 'tester', 'institution', 'faculty', 'department', 'speciality'):
            fields[name] = input(f"  {name.capitalize()}: ").strip()
        store.update_tester_info(**fields)


def run_category(store, selector, category):
    """
    Run one category to completion.

    Returns:
        bool: False if the user asked to stop
    """
    flow = QuestionFlowController(store, category, selector)
    step = flow.start()

    if flow.state == FlowState.SUBMITTED:
        print(f"{category} already completed.\n")
        return True

    if step.degraded:
        print("Warning: image source unavailable, placeholder images in use.")

    while flow.state == FlowState.ANSWERING:
        question = step.question
        print(f"\n[{category}] Question {question['number']}/{question['total']}")
        print(f"Image: {question['path']}")
        reply = input("Real or fake? (r/f) > ").strip().lower()

        if reply in EXIT_COMMANDS:
            return False
        if reply in REAL_INPUTS:
            step = flow.answer(True)
        elif reply in FAKE_INPUTS:
            step = flow.answer(False)
        else:
            print("Please answer 'r' (real) or 'f' (fake).")

    total = store.get_category_state(category).total_questions
    while flow.state == FlowState.REVIEWING:
        comment = input(
            f"\nBased on the {total} images, what is your "
            f"opinion of the real and fake quality of the {category} cells?\n> "
        )
        if comment.strip().lower() in EXIT_COMMANDS:
            return False
        result = flow.submit(comment)
        if isinstance(result, IllegalCommand):
            print(f"{result.reason}.")

    print(f"{category} submitted.\n")
    return True


def main():
    """Run console test"""
    print_separator()
    print("VISUAL TURING TEST - CONSOLE")
    print_separator()

    config = AppConfig.from_env()
    store = SessionStore.load(
        LocalStorage(config.storage_dir),
        categories=config.categories,
        question_count=config.question_count,
        debounce_seconds=config.debounce_seconds,
    )
    selector = ImageSelector(
        question_count=config.question_count,
        manifest_path=config.manifest_path,
        image_root=config.image_root,
    )

    print("Type 'quit', 'exit', or 'stop' to end early (progress is saved)\n")

    try:
        ask_profile(store)

        for category in config.categories:
            if not run_category(store, selector, category):
                print("\nStopped early. Run again to resume.")
                return 0

        export = store.export_all()
        path = ExportArchive(config.collection_dir).save_export(export)

        print_separator()
        print("ALL TESTS COMPLETE")
        print_separator()
        print(format_export_summary(export))
        print(f"\nResults saved to: {path}")

    except KeyboardInterrupt:
        print("\n\nInterrupted by user (Ctrl+C). Progress is saved.")

    finally:
        store.close()

    return 0


if __name__ == '__main__':
    sys.exit(main())
