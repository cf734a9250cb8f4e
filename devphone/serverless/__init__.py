"""Webhook backend handler sources deployed to Twilio Serverless."""
