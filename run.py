#!/usr/bin/env python3
"""
Harecame - Entry Point
"""
import os
import signal
import ssl
from dotenv import load_dotenv

# Load environment variables before importing app
load_dotenv()

from harecame import create_app
from harecame.config import DevelopmentConfig, ProductionConfig
from harecame.services import mqtt


def main():
    """Main entry point"""
    # Debug mode - disabled by default for security
    # Set DEBUG=true in environment to enable (development only!)
    debug_mode = os.environ.get('DEBUG', 'false').lower() == 'true'

    app = create_app(DevelopmentConfig if debug_mode else ProductionConfig)

    # Start background services
    mqtt.start(app.config)

    signal.signal(signal.SIGINT, lambda s, f: exit(0))
    signal.signal(signal.SIGTERM, lambda s, f: exit(0))

    if debug_mode:
        print("[Flask] WARNING: Debug mode is ENABLED (not for production!)")

    port = int(os.environ.get('PORT', '5000'))

    # Check for HTTPS certificates
    https_enabled = app.config.get('HTTPS_ENABLED', False)
    cert_file = os.environ.get('SSL_CERT_FILE', '/app/certs/server.crt')
    key_file = os.environ.get('SSL_KEY_FILE', '/app/certs/server.key')

    # Fallback to local certs directory for non-Docker runs
    if not os.path.exists(cert_file):
        cert_file = os.path.join(os.path.dirname(__file__), 'certs', 'server.crt')
        key_file = os.path.join(os.path.dirname(__file__), 'certs', 'server.key')

    if https_enabled and os.path.exists(cert_file) and os.path.exists(key_file):
        # HTTPS mode
        print(f"[Flask] Starting HTTPS web server on https://0.0.0.0:{port}")
        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_context.minimum_version = ssl.TLSVersion.TLSv1_2
        ssl_context.load_cert_chain(cert_file, key_file)
        app.run(host='0.0.0.0', port=port, debug=debug_mode, threaded=True,
                use_reloader=False, ssl_context=ssl_context)
    else:
        # HTTP mode (fallback)
        if https_enabled:
            print("[Flask] WARNING: HTTPS enabled but certificates not found!")
            print("[Flask] Falling back to HTTP (insecure)")
        print(f"[Flask] Starting web server on http://0.0.0.0:{port}")
        app.run(host='0.0.0.0', port=port, debug=debug_mode, threaded=True, use_reloader=False)


if __name__ == '__main__':
    main()
