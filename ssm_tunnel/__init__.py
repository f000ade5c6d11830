"""aws-ssm-tunnel: SSM port-forwarding to EC2, RDS and ElastiCache targets."""

__version__ = "0.4.0"
