import secrets
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, MutableMapping, Optional

from flask import Flask, flash, g, jsonify, redirect, render_template, request, session, url_for
from flask_cors import CORS

from sambright_access.utils.auth_providers import CredentialProvider, ProfileStore, ProfileStoreError
from sambright_access.utils.config_access import AccessConfig, load_access_config
from sambright_access.utils.env import read_secret
from sambright_access.utils.identity import IdentityResolver
from sambright_access.utils.logging import get_logger, setup_logging
from sambright_access.utils.profile_service import PostgresProfileStore
from sambright_access.utils.rbac.decorators import (
    EXTENSION_KEY,
    access_denied_response,
    require_authenticated,
    require_resource,
)
from sambright_access.utils.rbac.gate import PORTAL_AREA, route_for_principal
from sambright_access.utils.rbac.navigation import NAV_ITEMS, NavItem, filter_navigation, is_active
from sambright_access.utils.rbac.registry import get_registry
from sambright_access.utils.rbac.role_enum import Resource, Role
from sambright_access.utils.session_manager import SessionLifecycleManager, SessionSnapshot, SessionState
from sambright_access.utils.supabase_service import SupabaseAuthProvider, SupabaseProfileStore
from sambright_access.utils.user_admin_service import (
    PermissionDeniedError,
    UserAdminError,
    UserAdminService,
)

logger = get_logger(__name__)

SESSION_ID_KEY = 'sid'
SESSION_TOKENS_KEY = 'tokens'

ProviderFactory = Callable[[MutableMapping[str, Any]], CredentialProvider]


@dataclass
class BrowserSession:
    manager: SessionLifecycleManager
    storage: Dict[str, Any]
    checked_at: float = field(default_factory=time.monotonic)


class SessionRegistry:
    """
    One SessionLifecycleManager per browser session.

    Managers are kept in memory, keyed by a random id stored in the signed
    session cookie. Tokens also live in the cookie, so a browser whose
    manager was evicted (or a restarted server) restores its session on the
    next request through the manager's page-load path.
    """

    def __init__(self, manager_factory: Callable[[Dict[str, Any]], SessionLifecycleManager], max_sessions: int = 1000):
        self._factory = manager_factory
        self._max_sessions = max_sessions
        self._sessions: 'OrderedDict[str, BrowserSession]' = OrderedDict()
        self._lock = threading.Lock()

    def get_or_create(self, sid: str, tokens: Optional[Dict[str, Any]] = None) -> BrowserSession:
        with self._lock:
            existing = self._sessions.get(sid)
            if existing is not None:
                self._sessions.move_to_end(sid)
                return existing

        storage = dict(tokens or {})
        browser_session = BrowserSession(manager=self._factory(storage), storage=storage)
        browser_session.manager.start()

        evicted = []
        with self._lock:
            current = self._sessions.get(sid)
            if current is not None:
                # Another request for the same browser won the race
                evicted.append(browser_session)
                browser_session = current
            else:
                self._sessions[sid] = browser_session
                while len(self._sessions) > self._max_sessions:
                    _, oldest = self._sessions.popitem(last=False)
                    evicted.append(oldest)
        for stale in evicted:
            stale.manager.close()
        return browser_session

    def discard(self, sid: str) -> None:
        with self._lock:
            browser_session = self._sessions.pop(sid, None)
        if browser_session is not None:
            browser_session.manager.close()

    def clear(self) -> None:
        with self._lock:
            closing = list(self._sessions.values())
            self._sessions.clear()
        for browser_session in closing:
            browser_session.manager.close()

    def __contains__(self, sid: str) -> bool:
        with self._lock:
            return sid in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class WebAppWrapper(object):

    def __init__(
        self,
        app: Flask,
        config: Optional[AccessConfig] = None,
        provider_factory: Optional[ProviderFactory] = None,
        profile_store: Optional[ProfileStore] = None,
    ):
        logger.info("Entering WebAppWrapper")
        self.app = app
        self.config = config or load_access_config()

        secret_key = read_secret("FLASK_SECRET_KEY")
        if not secret_key:
            logger.warning("FLASK_SECRET_KEY not found, generating a random secret key")
            secret_key = secrets.token_hex(32)
        self.app.secret_key = secret_key

        self.app.config['SESSION_COOKIE_HTTPONLY'] = True
        self.app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'

        self.profile_store = profile_store or self._build_profile_store()
        self.provider_factory = provider_factory or self._build_provider
        self.resolver = IdentityResolver(self.profile_store, timeout=self.config.profile_timeout_seconds)
        self.user_admin = UserAdminService(self.profile_store)
        self.sessions = SessionRegistry(self._build_manager)

        self.app.extensions[EXTENSION_KEY] = self
        self.app.after_request(self._persist_tokens)
        self.app.context_processor(self._template_context)

        CORS(self.app)

        # Public endpoints
        self.add_endpoint('/api/health', 'health', self.health)
        self.add_endpoint('/login', 'login', self.login, methods=['GET', 'POST'])
        self.add_endpoint('/signup', 'signup', self.signup, methods=['POST'])
        self.add_endpoint('/logout', 'logout', self.logout, methods=['GET', 'POST'])
        self.add_endpoint('/auth/user', 'get_user', self.get_user)

        # Signed-in endpoints
        self.add_endpoint('/', 'index', self.index)
        self.add_endpoint('/auth/refresh', 'refresh_session', require_authenticated(self.refresh_session), methods=['POST'])
        self.add_endpoint('/api/navigation', 'navigation', require_authenticated(self.navigation))
        self.add_endpoint('/portal', 'portal', require_authenticated(self.portal))

        # One gated view per application area
        logger.info("Adding gated resource views")
        for item in NAV_ITEMS:
            endpoint_name = item.id.value.replace('-', '_')
            self.add_endpoint(item.path, endpoint_name, require_resource(item.id)(self._make_resource_view(item)))

        # User administration (super admin)
        logger.info("Adding user administration API endpoints")
        self.add_endpoint('/api/users', 'list_users', require_resource(Resource.USERS)(self.list_users))
        self.add_endpoint('/api/users/<user_id>/role', 'change_user_role', require_resource(Resource.USERS)(self.change_user_role), methods=['POST'])
        self.add_endpoint('/api/users/<user_id>', 'delete_user', require_resource(Resource.USERS)(self.delete_user), methods=['DELETE'])

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _build_profile_store(self) -> ProfileStore:
        if self.config.profile_backend == 'postgres':
            logger.info("Using PostgreSQL profile store")
            return PostgresProfileStore(
                self.config.pg_config,
                table=self.config.profiles_table,
                timeout=self.config.profile_timeout_seconds,
            )
        logger.info(f"Using Supabase profile store at {self.config.supabase_url}")
        return SupabaseProfileStore(
            self.config.supabase_url,
            self.config.anon_key or '',
            table=self.config.profiles_table,
            service_role_key=self.config.service_role_key,
            timeout=self.config.http_timeout_seconds,
        )

    def _build_provider(self, storage: MutableMapping[str, Any]) -> CredentialProvider:
        return SupabaseAuthProvider(
            self.config.supabase_url,
            self.config.anon_key or '',
            storage=storage,
            timeout=self.config.http_timeout_seconds,
            jwt_secret=self.config.jwt_secret,
        )

    def _build_manager(self, storage: Dict[str, Any]) -> SessionLifecycleManager:
        return SessionLifecycleManager(self.provider_factory(storage), self.resolver)

    def _browser_session(self) -> BrowserSession:
        sid = session.get(SESSION_ID_KEY)
        if not sid:
            sid = secrets.token_urlsafe(24)
            session[SESSION_ID_KEY] = sid
        cached = sid in self.sessions
        browser_session = self.sessions.get_or_create(sid, session.get(SESSION_TOKENS_KEY))
        # A manager created for this request was just resolved by start()
        if cached and not g.get('session_revalidated'):
            g.session_revalidated = True
            self._revalidate(browser_session)
        return browser_session

    def _revalidate(self, browser_session: BrowserSession) -> None:
        """
        Re-check a cached session against the provider before it is used.

        Expired tokens are refreshed (or the session is dropped), revoked
        credentials become ANONYMOUS and role changes made by an admin are
        picked up. Runs at most once per request and once per
        session_revalidate_seconds.
        """
        now = time.monotonic()
        if now - browser_session.checked_at < self.config.session_revalidate_seconds:
            return
        browser_session.checked_at = now
        if browser_session.manager.current().state is SessionState.ANONYMOUS and not browser_session.storage:
            return
        browser_session.manager.refresh()

    def current_manager(self) -> SessionLifecycleManager:
        return self._browser_session().manager

    def current_snapshot(self) -> SessionSnapshot:
        return self.current_manager().current()

    def _persist_tokens(self, response):
        sid = session.get(SESSION_ID_KEY)
        if sid:
            browser_session = self.sessions.get_or_create(sid, session.get(SESSION_TOKENS_KEY))
            tokens = {k: v for k, v in browser_session.storage.items() if v}
            if tokens != session.get(SESSION_TOKENS_KEY):
                if tokens:
                    session[SESSION_TOKENS_KEY] = tokens
                else:
                    session.pop(SESSION_TOKENS_KEY, None)
        return response

    def _template_context(self) -> Dict[str, Any]:
        if not session.get(SESSION_ID_KEY):
            return {'principal': None, 'nav_items': [], 'role_label': None}
        snapshot = self.current_snapshot()
        principal = snapshot.principal if snapshot.is_authenticated else None
        role = principal.role if principal else None
        info = get_registry().get_role_info(role) if role else None
        return {
            'principal': principal,
            'nav_items': filter_navigation(role),
            'role_label': info['label'] if info else None,
            'active_path': request.path,
            'is_active': is_active,
        }

    # ------------------------------------------------------------------
    # Authentication endpoints
    # ------------------------------------------------------------------

    def health(self):
        return jsonify({"status": "OK"}), 200

    def _home_url(self, snapshot: SessionSnapshot) -> str:
        if route_for_principal(snapshot.principal) == PORTAL_AREA:
            return url_for('portal')
        return url_for('dashboard')

    def index(self):
        snapshot = self.current_snapshot()
        if snapshot.is_loading:
            return render_template('loading.html'), 503
        if not snapshot.is_authenticated:
            return redirect(url_for('login'))
        return redirect(self._home_url(snapshot))

    @staticmethod
    def _json_payload() -> Optional[Dict[str, Any]]:
        """The request's JSON object, or None when the body is not a JSON object."""
        if not request.is_json:
            return None
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else None

    def _form_value(self, name: str, default: str = '') -> str:
        payload = self._json_payload()
        if payload is not None:
            value = payload.get(name, default)
        else:
            value = request.form.get(name, default)
        return value.strip() if isinstance(value, str) and name not in ('password', 'confirm_password') else value

    def login(self):
        """Email/password login; the session manager resolves the principal."""
        manager = self.current_manager()
        if manager.current().is_authenticated and request.method == 'GET':
            return redirect(self._home_url(manager.current()))

        if request.method == 'POST':
            email = self._form_value('email')
            password = self._form_value('password')
            result = manager.sign_in(email, password)
            snapshot = manager.current()

            if request.is_json:
                status = 200 if result.success else 401
                return jsonify({
                    'success': result.success,
                    'error': result.message,
                    'user': snapshot.principal.to_dict() if snapshot.principal else None,
                }), status

            if result.success:
                return redirect(self._home_url(snapshot))
            flash(result.message)
            return render_template('login.html', roles=self._role_choices()), 401

        return render_template('login.html', roles=self._role_choices())

    def signup(self):
        """Create an account; the user must sign in afterwards."""
        manager = self.current_manager()
        result = manager.sign_up(
            email=self._form_value('email'),
            password=self._form_value('password'),
            name=self._form_value('name'),
            role=self._form_value('role', Role.CLIENT.value) or Role.CLIENT.value,
            confirm_password=self._form_value('confirm_password', None),
        )

        if request.is_json:
            return jsonify({'success': result.success, 'error': result.message}), 200 if result.success else 400

        if result.success:
            flash('Account created! Please sign in.')
            return redirect(url_for('login'))
        flash(result.message)
        return render_template('login.html', roles=self._role_choices(), active_tab='signup'), 400

    def logout(self):
        """Sign out with the provider and drop this browser's manager."""
        sid = session.get(SESSION_ID_KEY)
        if sid:
            self.current_manager().sign_out()
            self.sessions.discard(sid)
        session.clear()

        if request.is_json:
            return jsonify({'success': True})
        flash('You have been logged out successfully')
        return redirect(url_for('login'))

    def get_user(self):
        """API endpoint for the current principal ({principal, is_loading})."""
        snapshot = self.current_snapshot()
        if snapshot.is_authenticated:
            principal = snapshot.principal
            info = get_registry().get_role_info(principal.role) or {}
            return jsonify({
                'logged_in': True,
                'is_loading': False,
                'user': principal.to_dict(),
                'role_label': info.get('label'),
                'area': route_for_principal(principal),
            })
        return jsonify({
            'logged_in': False,
            'is_loading': snapshot.is_loading,
        })

    def refresh_session(self):
        """Re-resolve the principal, picking up role changes made by an admin."""
        manager = self.current_manager()
        manager.refresh()
        snapshot = manager.current()
        return jsonify({
            'logged_in': snapshot.is_authenticated,
            'user': snapshot.principal.to_dict() if snapshot.principal else None,
        })

    @staticmethod
    def _role_choices():
        registry = get_registry()
        return [(role.value, registry.get_role_info(role)['label']) for role in Role]

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def navigation(self):
        snapshot = self.current_snapshot()
        active_path = request.args.get('active', '')
        items = []
        for item in filter_navigation(snapshot.role):
            entry = item.to_dict()
            entry['active'] = is_active(item, active_path)
            items.append(entry)
        return jsonify({'items': items})

    def portal(self):
        snapshot = self.current_snapshot()
        if route_for_principal(snapshot.principal) != PORTAL_AREA:
            return redirect(url_for('dashboard'))
        return render_template('portal.html')

    def _make_resource_view(self, item: NavItem) -> Callable:
        def view():
            return render_template('view.html', item=item)
        view.__name__ = f"{item.id.value.replace('-', '_')}_view"
        return view

    # ------------------------------------------------------------------
    # User administration
    # ------------------------------------------------------------------

    def _admin_call(self, fn: Callable, *args):
        try:
            return fn(self.current_snapshot().principal, *args), None
        except PermissionDeniedError:
            return None, access_denied_response()
        except UserAdminError as exc:
            return None, (jsonify({'error': str(exc), 'status': 400}), 400)
        except ProfileStoreError as exc:
            logger.error(f"User administration failed: {exc}")
            return None, (jsonify({'error': 'Profile store unavailable', 'status': 502}), 502)

    def list_users(self):
        users, error = self._admin_call(self.user_admin.list_users, request.args.get('search', ''))
        if error:
            return error
        return jsonify({'users': [u.to_dict() for u in users]})

    def change_user_role(self, user_id: str):
        payload = self._json_payload() or {}
        role = payload.get('role') or request.form.get('role', '')
        user, error = self._admin_call(self.user_admin.change_role, user_id, role)
        if error:
            return error
        return jsonify({'success': True, 'user': user.to_dict()})

    def delete_user(self, user_id: str):
        _, error = self._admin_call(self.user_admin.delete_user, user_id)
        if error:
            return error
        return jsonify({'success': True})

    # ------------------------------------------------------------------

    def add_endpoint(self, endpoint=None, endpoint_name=None, handler=None, methods=['GET'], *args, **kwargs):
        self.app.add_url_rule(endpoint, endpoint_name, handler, methods=methods, *args, **kwargs)

    def run(self, **kwargs):
        self.app.run(**kwargs)

    def close(self) -> None:
        """Close every browser session and stop the profile lookup workers."""
        logger.info("Shutting down WebAppWrapper")
        self.sessions.clear()
        self.resolver.shutdown()


def create_app(
    config: Optional[AccessConfig] = None,
    provider_factory: Optional[ProviderFactory] = None,
    profile_store: Optional[ProfileStore] = None,
) -> Flask:
    """Build the Flask application with the access-control core wired in."""
    config = config or load_access_config()
    setup_logging(config.log_level)
    app = Flask(__name__)
    WebAppWrapper(app, config=config, provider_factory=provider_factory, profile_store=profile_store)
    return app
