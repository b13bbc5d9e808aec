"""
Flask Web Application for the Visual Turing Test

Single-tester, single-device web interface. All session state lives in one
SessionStore persisted to local disk; pages only read from it and call its
mutators through the JSON API.
"""

import atexit
import io
import json
import logging

from flask import Flask, jsonify, redirect, render_template, request, send_file, send_from_directory

from vtt.config import AppConfig
from vtt.core.image_selector import ImageSelector
from vtt.core.question_flow import QuestionFlowController
from vtt.core.results_aggregator import summarize_testers
from vtt.core.session_store import IndexOutOfRange, SessionStore
from vtt.persistence import ExportArchive, LocalStorage
from vtt.results import IllegalCommand
from vtt.utils.display_helpers import category_status, format_duration
from vtt.utils.helpers import generate_export_filename

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# First path segments that are redirected to lowercase
LOWERCASE_SECTIONS = {'dashboard', 'thankyou'}


def create_app(config=None, store=None, image_selector=None, archive=None):
    """
    Build the Flask app.

    Args:
        config: AppConfig (defaults to AppConfig.from_env())
        store: SessionStore (defaults to loading from config.storage_dir)
        image_selector: ImageSelector (defaults to one built from config)
        archive: ExportArchive (defaults to config.collection_dir)

    Returns:
        Flask app with the session objects in app.extensions['vtt']
    """
    config = config or AppConfig.from_env()

    if store is None:
        store = SessionStore.load(
            LocalStorage(config.storage_dir),
            categories=config.categories,
            question_count=config.question_count,
            debounce_seconds=config.debounce_seconds,
        )
        atexit.register(store.close)

    if image_selector is None:
        image_selector = ImageSelector(
            question_count=config.question_count,
            manifest_path=config.manifest_path,
            image_root=config.image_root,
        )

    app = Flask(__name__)
    app.config['SECRET_KEY'] = config.secret_key
    app.extensions['vtt'] = {
        'config': config,
        'store': store,
        'selector': image_selector,
        'archive': archive or ExportArchive(config.collection_dir),
        'controllers': {},  # category -> QuestionFlowController for the current visit
    }

    _register_routes(app)
    logger.info(f"App created (categories={list(config.categories)}, N={config.question_count})")
    return app


def _session(app):
    return app.extensions['vtt']


def _error(message, status):
    return jsonify({'success': False, 'error': message}), status


def _flow_response(result):
    if isinstance(result, IllegalCommand):
        logger.warning(f"Rejected {result.command_type}: {result.reason}")
        return jsonify({'success': False, 'error': result.reason, 'illegal': result.to_json()}), 409
    return jsonify({'success': True, 'step': result.to_json()})


def _register_routes(app):
    session = _session(app)
    store = session['store']
    config = session['config']

    def resolve_category(name):
        for category in config.categories:
            if category.lower() == name.lower():
                return category
        return None

    @app.before_request
    def lowercase_sections():
        """Redirect /Dashboard/... and /ThankYou to their lowercase section."""
        parts = request.path.split('/')
        if len(parts) > 1 and parts[1].lower() in LOWERCASE_SECTIONS and parts[1] != parts[1].lower():
            parts[1] = parts[1].lower()
            target = '/'.join(parts)
            if request.query_string:
                target += '?' + request.query_string.decode('utf-8', errors='replace')
            return redirect(target)
        return None

    # ========================
    # Pages
    # ========================

    @app.route('/')
    def index():
        """Landing page with the tester profile form"""
        return render_template('index.html', tester_info=store.get_tester_info())

    @app.route('/dashboard')
    def dashboard():
        if not store.has_tester_identity():
            return redirect('/')
        cards = [
            {
                'category': category,
                'results': store.get_results(category),
                'status': category_status(store.get_results(category)),
            }
            for category in config.categories
        ]
        return render_template('dashboard.html', cards=cards, all_completed=store.all_completed())

    @app.route('/dashboard/<name>')
    def question_page(name):
        if not store.has_tester_identity():
            return redirect('/')
        category = resolve_category(name)
        if category is None:
            return _error(f"Unknown category: {name}", 404)
        return render_template('question.html', category=category)

    @app.route('/thankyou')
    def thankyou():
        if not store.has_tester_identity():
            return redirect('/')
        export = store.export_all()
        durations = {
            category: format_duration(results.get('startTime'), results.get('endTime'))
            for category, results in export['results'].items()
        }
        return render_template('thankyou.html', export=export, durations=durations)

    @app.route('/<name>/<any(real, fake):kind>/<path:filename>')
    def category_image(name, kind, filename):
        category = resolve_category(name)
        if category is None:
            return _error(f"Unknown category: {name}", 404)
        return send_from_directory(f"{config.image_root}/{category}/{kind}", filename)

    # ========================
    # Profile
    # ========================

    @app.route('/api/profile', methods=['GET'])
    def get_profile():
        return jsonify({'success': True, 'testerInfo': store.get_tester_info()})

    @app.route('/api/profile', methods=['POST'])
    def save_profile():
        """Save tester identity fields"""
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return _error('Expected a JSON object', 400)
        try:
            store.update_tester_info(**data)
        except (ValueError, TypeError) as e:
            return _error(str(e), 400)
        logger.info(f"Profile saved for tester '{store.tester_info.tester}'")
        return jsonify({'success': True, 'testerInfo': store.get_tester_info()})

    # ========================
    # Dashboard and test flow
    # ========================

    @app.route('/api/dashboard')
    def dashboard_data():
        if not store.has_tester_identity():
            return jsonify({'success': False, 'error': 'Tester profile not set', 'redirect': '/'}), 403
        return jsonify({
            'success': True,
            'results': {category: store.get_results(category) for category in config.categories},
            'allCompleted': store.all_completed(),
        })

    @app.route('/api/test/<name>/start', methods=['POST'])
    def start_test(name):
        """Open (or resume) a category and return the first step"""
        category = resolve_category(name)
        if category is None:
            return _error(f"Unknown category: {name}", 404)
        if not store.has_tester_identity():
            return jsonify({'success': False, 'error': 'Tester profile not set', 'redirect': '/'}), 403

        try:
            controller = QuestionFlowController(store, category, session['selector'])
            session['controllers'][category] = controller
            return _flow_response(controller.start())
        except Exception as e:
            logger.error(f"Error starting test {category}: {e}")
            return _error(str(e), 500)

    @app.route('/api/test/<name>/answer', methods=['POST'])
    def submit_answer(name):
        """Record a real/fake judgment and return the next step"""
        category = resolve_category(name)
        if category is None:
            return _error(f"Unknown category: {name}", 404)

        controller = session['controllers'].get(category)
        if controller is None:
            return _error('No active test for this category', 400)

        data = request.get_json(silent=True) or {}
        is_real = data.get('isReal')
        if not isinstance(is_real, bool):
            return _error('isReal must be true or false', 400)

        try:
            return _flow_response(controller.answer(is_real))
        except IndexOutOfRange as e:
            return _error(str(e), 400)
        except Exception as e:
            logger.error(f"Error recording answer for {category}: {e}")
            return _error(str(e), 500)

    @app.route('/api/test/<name>/submit', methods=['POST'])
    def submit_comment(name):
        """Save the closing comment and complete the category"""
        category = resolve_category(name)
        if category is None:
            return _error(f"Unknown category: {name}", 404)

        controller = session['controllers'].get(category)
        if controller is None:
            return _error('No active test for this category', 400)

        data = request.get_json(silent=True) or {}
        comment = data.get('comment', '')
        if not isinstance(comment, str):
            return _error('comment must be a string', 400)

        result = controller.submit(comment)
        if not isinstance(result, IllegalCommand):
            session['controllers'].pop(category, None)
        return _flow_response(result)

    # ========================
    # Export and reset
    # ========================

    @app.route('/api/export')
    def export_results():
        return jsonify({'success': True, 'export': store.export_all()})

    @app.route('/api/export/download')
    def download_export():
        """Download the export document as a JSON attachment"""
        export = store.export_all()
        payload = json.dumps(export, indent=2, ensure_ascii=False).encode('utf-8')
        return send_file(
            io.BytesIO(payload),
            mimetype='application/json',
            as_attachment=True,
            download_name=generate_export_filename(export['testerInfo']['tester']),
        )

    @app.route('/api/export/save', methods=['POST'])
    def save_export():
        """Write the export document into the collection folder"""
        if not store.has_tester_identity():
            return jsonify({'success': False, 'error': 'Tester profile not set', 'redirect': '/'}), 403
        try:
            path = session['archive'].save_export(store.export_all())
        except OSError as e:
            logger.error(f"Error saving export: {e}")
            return _error(str(e), 500)
        return jsonify({'success': True, 'path': path})

    @app.route('/api/reset', methods=['POST'])
    def reset():
        store.reset_all()
        session['controllers'].clear()
        logger.info("Profile and test data reset")
        return jsonify({'success': True, 'redirect': '/'})

    # ========================
    # Collected results
    # ========================

    @app.route('/api/tester-results')
    def tester_results():
        """All exported tester documents (unparseable files skipped)"""
        try:
            return jsonify(session['archive'].list_exports())
        except Exception as e:
            logger.error(f"Error fetching tester results: {e}")
            return jsonify({'error': 'Failed to fetch tester results'}), 500

    @app.route('/api/tester-results/summary')
    def tester_results_summary():
        """Averages and combined confusion matrices across testers"""
        try:
            exports = session['archive'].list_exports()
        except Exception as e:
            logger.error(f"Error fetching tester results: {e}")
            return jsonify({'error': 'Failed to fetch tester results'}), 500

        summary = summarize_testers(
            exports,
            categories=config.categories,
            exclude_testers=request.args.getlist('exclude'),
        )
        return jsonify({'success': True, 'summary': summary})


if __name__ == '__main__':
    app = create_app()

    print("\n" + "=" * 60)
    print("VISUAL TURING TEST - WEB INTERFACE")
    print("=" * 60)
    print("\nServer starting...")
    print("Open your browser and go to: http://localhost:5000")
    print("\nPress Ctrl+C to stop the server")
    print("=" * 60 + "\n")

    # Single-threaded: the session store is not shared across request threads
    app.run(debug=False, host='127.0.0.1', port=5000, threaded=False)
