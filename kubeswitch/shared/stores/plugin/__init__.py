"""Out-of-process kubeconfig stores speaking the ``kubeconfigstore.v1`` gRPC service."""
