SERVICE_NAME = "amqpcli"
