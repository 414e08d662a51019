"""WordPress behind a Cloudflare Tunnel recipe."""
