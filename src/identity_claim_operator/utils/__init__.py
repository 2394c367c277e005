"""
Utils package - Utility modules for IdentityClaim operator functionality.

Contains helper modules for:
- Kubernetes API access (claims, pods, cert-manager Certificates)
- Label selector compilation and pod counting
- Status condition bookkeeping
- Certificate ownership links
- Duration parsing and formatting
"""
