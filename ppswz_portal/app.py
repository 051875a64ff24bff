import atexit
import logging
import os

import click
from flask import (Blueprint, Flask, current_app, flash, g, jsonify, redirect, render_template,
                   request, session, url_for)
from pydantic import ValidationError

from . import config, content, database
from .auth import (INACTIVITY_REASON, REGISTRY_EXTENSION, TIMEOUT_MESSAGE, AuthError, AuthService,
                   SessionRegistry, admin_required, current_auth, get_registry, login_required,
                   wants_json)
from .media import InvalidImageError, remove_advertisement_image, save_advertisement_image
from .schemas import (ActivityReport, AdvertisementForm, ApplicationStatusUpdate, ContactForm,
                      LoginForm, MembershipApplicationForm, ProfileUpdateForm, RoleUpdate,
                      SignupForm, VisibilityReport, field_errors)
from .session_timeout import VISIBILITY_EVENT, ThreadingScheduler
from .utils import compute_time_ago, setup_logging

portal = Blueprint('portal', __name__)


def create_app(test_config=None, scheduler=None):
    """Build the portal application; test_config overrides values from config.py."""
    app = Flask(__name__)
    app.config.from_object(config)
    if test_config:
        app.config.update(test_config)

    if not app.config.get('TESTING'):
        setup_logging(app.config['LOG_FILE'], getattr(logging, app.config['LOG_LEVEL'], logging.INFO))

    database.configure(app.config['DATABASE_PATH'])
    os.makedirs(app.config['ADVERTISEMENT_IMAGE_DIR'], exist_ok=True)

    registry = SessionRegistry(
        AuthService(),
        scheduler=scheduler or ThreadingScheduler(),
        timeout_minutes=app.config['SESSION_TIMEOUT_MINUTES'],
        throttle_seconds=app.config['ACTIVITY_THROTTLE_SECONDS'],
    )
    registry.init()
    app.extensions[REGISTRY_EXTENSION] = registry
    if not app.config.get('TESTING'):
        atexit.register(registry.teardown)

    app.register_blueprint(portal)
    app.before_request(load_current_auth)
    app.context_processor(inject_site_context)
    register_commands(app)

    # Initialize database on startup (non-blocking)
    try:
        with app.app_context():
            database.init_db()
            app.logger.info("Database initialized successfully")
    except Exception as e:
        app.logger.error(f"Database initialization error: {e}")

    return app


def load_current_auth():
    """Attach the AuthState of the requesting browser session to g.auth."""
    g.auth = None
    g.session_expired = False
    token = session.get('auth_token')
    if not token:
        return

    state = get_registry().restore(token)
    if state is None:
        session.pop('auth_token', None)
        row = database.get_auth_session(token)
        if row and row['revoke_reason'] == INACTIVITY_REASON:
            g.session_expired = True
            flash(TIMEOUT_MESSAGE, 'warning')
        return
    g.auth = state


def inject_site_context():
    return {
        'auth': current_auth(),
        'org_name': content.ORGANIZATION_NAME,
        'org_short_name': content.ORGANIZATION_SHORT_NAME,
        'session_timeout_minutes': current_app.config['SESSION_TIMEOUT_MINUTES'],
    }


def _form_payload():
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _validation_failed(exc, redirect_to):
    errors = field_errors(exc)
    if wants_json():
        return jsonify({"success": False, "errors": errors}), 400
    for field, message in errors.items():
        flash(f"{field.replace('_', ' ').capitalize()}: {message}", 'error')
    return redirect(redirect_to)


def _expired_reply():
    return jsonify({"success": True, "expired": True, "message": TIMEOUT_MESSAGE,
                    "redirect": url_for('portal.auth_page')})


def _safe_next(target):
    if target and target.startswith('/') and not target.startswith('//'):
        return target
    return None


# --- Public Website ---

@portal.route('/')
def home():
    try:
        advertisements = database.get_advertisements(active_only=True)
    except Exception as e:
        current_app.logger.warning(f"Failed to load advertisements: {e}")
        advertisements = []
    return render_template(
        'index.html',
        about=content.ABOUT,
        services=content.SERVICES,
        goals=content.GOALS,
        tiers=content.MEMBERSHIP_TIERS,
        benefits=content.BENEFITS,
        payment_methods=content.PAYMENT_METHODS,
        contact_channels=content.CONTACT_CHANNELS,
        advertisements=advertisements,
    )


@portal.route('/contact', methods=['POST'])
def contact():
    try:
        form = ContactForm(**_form_payload())
    except ValidationError as e:
        return _validation_failed(e, url_for('portal.home', _anchor='contact'))

    try:
        message_id = database.create_contact_message(form.name, str(form.email), form.message, phone=form.phone)
        user_id = current_auth().user_id if current_auth() else None
        database.log_activity('contact_submitted', f'Contact message from {form.name}', user_id=user_id,
                              metadata={"message_id": message_id})
    except Exception as e:
        current_app.logger.error(f"Failed to store contact message: {e}")
        if wants_json():
            return jsonify({"success": False, "error": str(e)}), 500
        flash("Your message could not be sent. Please try again later.", 'error')
        return redirect(url_for('portal.home', _anchor='contact'))

    if wants_json():
        return jsonify({"success": True, "id": message_id}), 201
    flash("Message sent successfully! We'll get back to you soon.", 'success')
    return redirect(url_for('portal.home', _anchor='contact'))


@portal.route('/membership/apply', methods=['POST'])
def apply_for_membership():
    try:
        form = MembershipApplicationForm(**_form_payload())
    except ValidationError as e:
        return _validation_failed(e, url_for('portal.home', _anchor='membership'))

    auth = current_auth()
    user_id = auth.user_id if auth else None
    try:
        application = form.model_dump()
        application['email'] = str(form.email)
        application_id = database.create_membership_application(application, user_id=user_id)
        database.log_activity('membership_applied', f'{form.full_name} applied for {form.membership_type}',
                              user_id=user_id, metadata={"application_id": application_id})
    except Exception as e:
        current_app.logger.error(f"Failed to store membership application: {e}")
        if wants_json():
            return jsonify({"success": False, "error": str(e)}), 500
        flash("Submission failed. Please try again later.", 'error')
        return redirect(url_for('portal.home', _anchor='membership'))

    current_app.logger.info(f"Membership application {application_id} received ({form.membership_type})")
    if wants_json():
        return jsonify({"success": True, "id": application_id, "status": "pending"}), 201
    flash("Application submitted! We will review your application and get back to you soon.", 'success')
    return redirect(url_for('portal.home', _anchor='membership'))


# --- Authentication ---

@portal.route('/auth', methods=['GET', 'POST'])
def auth_page():
    mode = request.args.get('mode', 'login')
    if request.method == 'GET':
        if current_auth() is not None:
            return redirect(url_for('portal.dashboard'))
        return render_template('auth.html', mode=mode, next=request.args.get('next', ''))

    payload = _form_payload()
    mode = payload.pop('mode', None) or mode
    next_url = _safe_next(payload.pop('next', None))
    registry = get_registry()
    try:
        if mode == 'signup':
            form = SignupForm(**payload)
            registry.auth_service.sign_up(str(form.email), form.password, form.full_name)
        else:
            form = LoginForm(**payload)
        state = registry.sign_in(str(form.email), form.password)
    except ValidationError as e:
        return _validation_failed(e, url_for('portal.auth_page', mode=mode))
    except AuthError as e:
        if wants_json():
            return jsonify({"success": False, "error": str(e)}), 400
        flash(str(e), 'error')
        return redirect(url_for('portal.auth_page', mode=mode))

    session.clear()
    session['auth_token'] = state.token
    current_app.logger.info(f"User {state.user_id} signed in")

    role = registry.resolve_role(state)
    destination = next_url or url_for('portal.admin_dashboard' if role == 'admin' else 'portal.dashboard')
    if wants_json():
        return jsonify({"success": True, "role": role, "redirect": destination})
    flash("Welcome back!" if mode != 'signup' else "Account created successfully!", 'success')
    return redirect(destination)


@portal.route('/logout', methods=['POST'])
def logout():
    token = session.pop('auth_token', None)
    if token:
        get_registry().sign_out(token)
    if wants_json():
        return jsonify({"success": True})
    flash("You have been signed out.", 'info')
    return redirect(url_for('portal.home'))


# --- Session Activity ---

@portal.route('/session/activity', methods=['POST'])
@login_required
def session_activity():
    try:
        report = ActivityReport(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        return jsonify({"success": False, "errors": field_errors(e)}), 400

    auth = current_auth()
    for event in report.events:
        auth.channel.emit(event)
    return jsonify({"success": True, "state": auth.monitor.state.value})


@portal.route('/session/visibility', methods=['POST'])
def session_visibility():
    try:
        report = VisibilityReport(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        return jsonify({"success": False, "errors": field_errors(e)}), 400

    auth = current_auth()
    if auth is None:
        # Timer already fired while the page was hidden
        if g.session_expired:
            return _expired_reply()
        return jsonify({"success": False, "error": "Authentication required"}), 401
    auth.channel.emit(VISIBILITY_EVENT, state=report.state)
    if get_registry().get(auth.token) is None:
        session.pop('auth_token', None)
        return _expired_reply()
    return jsonify({"success": True, "expired": False, "state": auth.monitor.state.value})


@portal.route('/session/status')
def session_status():
    auth = current_auth()
    if auth is None:
        return jsonify({"authenticated": False})
    return jsonify({
        "authenticated": True,
        "state": auth.monitor.state.value,
        "timeout_minutes": auth.monitor.timeout_minutes,
        "idle_seconds": round(auth.monitor.elapsed(), 1),
    })


# --- Member Dashboard ---

@portal.route('/dashboard')
@login_required
def dashboard():
    auth = current_auth()
    applications = []
    activities = []
    try:
        profile = database.get_profile(auth.user_id) or auth.user
        applications = database.get_membership_applications(user_id=auth.user_id)
        for application in applications:
            application['tier'] = content.get_tier(application['membership_type'])
        activities = database.get_activities(user_id=auth.user_id, limit=20)
        for activity in activities:
            activity['label'] = content.action_label(activity['action'])
            activity['time_ago'] = compute_time_ago(activity['created_at'])
    except Exception as e:
        current_app.logger.error(f"Dashboard error: {e}")
        profile = auth.user

    profile = {key: value for key, value in profile.items() if key != 'password_hash'}
    return render_template('dashboard.html', profile=profile, applications=applications,
                           activities=activities, tiers=content.MEMBERSHIP_TIERS)


@portal.route('/dashboard/profile', methods=['POST'])
@login_required
def update_profile():
    auth = current_auth()
    try:
        form = ProfileUpdateForm(**_form_payload())
    except ValidationError as e:
        return _validation_failed(e, url_for('portal.dashboard'))

    updates = form.model_dump(exclude_none=True)
    if updates:
        database.update_profile(auth.user_id, **updates)
        database.log_activity('profile_update', 'Profile updated', user_id=auth.user_id,
                              metadata={"fields": sorted(updates)})
        auth.user.update(updates)

    if wants_json():
        return jsonify({"success": True, "updated": sorted(updates)})
    flash("Profile updated." if updates else "Nothing to update.", 'success')
    return redirect(url_for('portal.dashboard'))


# --- Admin Dashboard ---

@portal.route('/admin')
@admin_required
def admin_dashboard():
    stats = database.get_dashboard_stats()
    users = []
    applications = []
    messages = []
    advertisements = []
    try:
        users = database.list_profiles_with_roles()
        applications = database.get_membership_applications()
        messages = database.get_contact_messages()
        advertisements = database.get_advertisements()
    except Exception as e:
        current_app.logger.error(f"Admin dashboard error: {e}")

    return render_template('admin.html', stats=stats, users=users, applications=applications,
                           messages=messages, advertisements=advertisements,
                           actions=content.ACTION_LABELS)


@portal.route('/admin/activity')
@admin_required
def admin_activity():
    action = request.args.get('action') or None
    try:
        profiles = {p['id']: p for p in database.list_profiles_with_roles()}
        enriched = []
        for act in database.get_activities(action=action):
            profile = profiles.get(act['user_id'])
            if act['user_id'] is None:
                user_name = "System"
            elif profile:
                user_name = profile['full_name'] or profile['email']
            else:
                user_name = "Unknown User"
            enriched.append({
                **act,
                "label": content.action_label(act['action']),
                "user_name": user_name,
                "time_ago": compute_time_ago(act['created_at']),
            })
        return jsonify({"activities": enriched, "actions": database.get_activity_actions()})
    except Exception as e:
        current_app.logger.error(f"Activity log error: {e}")
        return jsonify({"activities": [], "actions": []})


@portal.route('/admin/users/<user_id>')
@admin_required
def admin_user_detail(user_id):
    profile = database.get_profile(user_id)
    if profile is None:
        return jsonify({"success": False, "error": "User not found"}), 404
    profile.pop('password_hash', None)
    activities = database.get_activities(user_id=user_id, limit=20)
    for act in activities:
        act['label'] = content.action_label(act['action'])
        act['time_ago'] = compute_time_ago(act['created_at'])
    return jsonify({
        "user": profile,
        "role": database.get_user_role(user_id) or "user",
        "activities": activities,
        "applications": database.get_membership_applications(user_id=user_id),
    })


@portal.route('/admin/users/<user_id>/role', methods=['POST'])
@admin_required
def admin_set_role(user_id):
    try:
        form = RoleUpdate(**_form_payload())
    except ValidationError as e:
        return _validation_failed(e, url_for('portal.admin_dashboard'))

    if database.get_profile(user_id) is None:
        return jsonify({"success": False, "error": "User not found"}), 404
    database.set_user_role(user_id, form.role)
    current_app.logger.info(f"Role of {user_id} set to {form.role} by {current_auth().user_id}")

    get_registry().apply_role(user_id, form.role)

    if wants_json():
        return jsonify({"success": True, "role": form.role})
    flash(f"User role updated to {form.role}", 'success')
    return redirect(url_for('portal.admin_dashboard'))


@portal.route('/admin/applications/<int:application_id>/status', methods=['POST'])
@admin_required
def admin_application_status(application_id):
    try:
        form = ApplicationStatusUpdate(**_form_payload())
    except ValidationError as e:
        return _validation_failed(e, url_for('portal.admin_dashboard'))

    if not database.set_application_status(application_id, form.status):
        return jsonify({"success": False, "error": "Application not found"}), 404
    if wants_json():
        return jsonify({"success": True, "status": form.status})
    flash(f"Application marked {form.status}", 'success')
    return redirect(url_for('portal.admin_dashboard'))


@portal.route('/admin/messages/<int:message_id>/read', methods=['POST'])
@admin_required
def admin_message_read(message_id):
    if not database.mark_message_read(message_id):
        return jsonify({"success": False, "error": "Message not found"}), 404
    if wants_json():
        return jsonify({"success": True})
    return redirect(url_for('portal.admin_dashboard'))


def _advertisement_form():
    payload = _form_payload()
    if not request.is_json:
        payload['is_active'] = 'is_active' in request.form
    form = AdvertisementForm(**payload)

    image_url = form.image_url
    upload = request.files.get('image')
    if upload is not None and upload.filename:
        filename = save_advertisement_image(
            upload,
            current_app.config['ADVERTISEMENT_IMAGE_DIR'],
            max_size=current_app.config['ADVERTISEMENT_IMAGE_MAX_SIZE'],
            quality=current_app.config['ADVERTISEMENT_IMAGE_QUALITY'],
        )
        image_url = url_for('static', filename=f'advertisements/{filename}')
    return form, image_url


@portal.route('/admin/advertisements', methods=['POST'])
@admin_required
def admin_create_advertisement():
    try:
        form, image_url = _advertisement_form()
    except ValidationError as e:
        return _validation_failed(e, url_for('portal.admin_dashboard'))
    except InvalidImageError as e:
        return jsonify({"success": False, "error": str(e)}), 400

    ad_id = database.create_advertisement(form.title, form.content, image_url=image_url,
                                          is_active=form.is_active, priority=form.priority,
                                          created_by=current_auth().user_id)
    if wants_json():
        return jsonify({"success": True, "id": ad_id, "image_url": image_url}), 201
    flash("Advertisement created", 'success')
    return redirect(url_for('portal.admin_dashboard'))


@portal.route('/admin/advertisements/<int:ad_id>', methods=['POST'])
@admin_required
def admin_update_advertisement(ad_id):
    existing = database.get_advertisement(ad_id)
    if existing is None:
        return jsonify({"success": False, "error": "Advertisement not found"}), 404
    try:
        form, image_url = _advertisement_form()
    except ValidationError as e:
        return _validation_failed(e, url_for('portal.admin_dashboard'))
    except InvalidImageError as e:
        return jsonify({"success": False, "error": str(e)}), 400

    if existing['image_url'] and existing['image_url'] != image_url:
        remove_advertisement_image(existing['image_url'], current_app.config['ADVERTISEMENT_IMAGE_DIR'])
    database.update_advertisement(ad_id, form.title, form.content, image_url=image_url,
                                  is_active=form.is_active, priority=form.priority)
    if wants_json():
        return jsonify({"success": True, "id": ad_id, "image_url": image_url})
    flash("Advertisement updated", 'success')
    return redirect(url_for('portal.admin_dashboard'))


@portal.route('/admin/advertisements/<int:ad_id>/toggle', methods=['POST'])
@admin_required
def admin_toggle_advertisement(ad_id):
    is_active = database.toggle_advertisement(ad_id)
    if is_active is None:
        return jsonify({"success": False, "error": "Advertisement not found"}), 404
    if wants_json():
        return jsonify({"success": True, "is_active": is_active})
    flash(f"Advertisement {'activated' if is_active else 'deactivated'}", 'success')
    return redirect(url_for('portal.admin_dashboard'))


@portal.route('/admin/advertisements/<int:ad_id>/delete', methods=['POST'])
@admin_required
def admin_delete_advertisement(ad_id):
    existing = database.get_advertisement(ad_id)
    if existing is None:
        return jsonify({"success": False, "error": "Advertisement not found"}), 404
    database.delete_advertisement(ad_id)
    remove_advertisement_image(existing['image_url'], current_app.config['ADVERTISEMENT_IMAGE_DIR'])
    if wants_json():
        return jsonify({"success": True})
    flash("Advertisement deleted", 'success')
    return redirect(url_for('portal.admin_dashboard'))


# --- CLI ---

def register_commands(app):
    @app.cli.command('init-db')
    def init_db_command():
        """Create the portal tables."""
        database.init_db()
        click.echo(f"Initialized database at {database.DATABASE_PATH}")

    @app.cli.command('create-admin')
    @click.argument('email')
    @click.argument('password')
    @click.option('--name', default=None, help='Full name of the administrator.')
    def create_admin_command(email, password, name):
        """Create an account (or promote an existing one) with the admin role."""
        profile = database.get_profile_by_email(email)
        if profile is None:
            try:
                form = SignupForm(email=email, password=password, full_name=name or 'Administrator')
            except ValidationError as e:
                raise click.ClickException("; ".join(f"{k}: {v}" for k, v in field_errors(e).items()))
            user_id = get_registry(app).auth_service.sign_up(str(form.email), form.password, form.full_name)
        else:
            user_id = profile['id']
        database.set_user_role(user_id, 'admin')
        click.echo(f"{email} is now an admin")


# Run the application
if __name__ == '__main__':
    # Explicitly disable reloader so only one process owns the session timers
    create_app().run(debug=False, port=5001, threaded=True, use_reloader=False)
