import logging
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import (
    AWS_ACCESS_KEY,
    AWS_REGION,
    AWS_SECRET_ACCESS_KEY,
    AWS_SES_SENDER_EMAIL,
    OTP_DELIVERY,
    OTP_LIFETIME_MINUTES,
)
from errors import UpstreamFailure, ValidationError

logger = logging.getLogger("maapaap_api.delivery")

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

# AWS error codes that mean the destination itself was refused
REJECTED_DESTINATION_CODES = {
    "MessageRejected",
    "InvalidParameterValue",
    "InvalidParameter",
    "InvalidParameterException",
}


def otp_text(otp: str) -> str:
    return f"Your Maapaap verification code is: {otp}. This code expires in {OTP_LIFETIME_MINUTES} minutes."


class LogDelivery:
    """Writes codes to the application log. For local development only."""

    def deliver(self, identifier: str, channel: str, otp: str) -> None:
        logger.info(
            f"OTP for {identifier} via {channel}: {otp} (expires in {OTP_LIFETIME_MINUTES} minutes)"
        )


class AWSDelivery:
    """Sends email codes through SES and phone codes through SNS."""

    def __init__(self, ses_client=None, sns_client=None):
        credentials = {
            "region_name": AWS_REGION,
            "aws_access_key_id": str(AWS_ACCESS_KEY) or None,
            "aws_secret_access_key": str(AWS_SECRET_ACCESS_KEY) or None,
        }
        self.ses = ses_client or boto3.client("ses", **credentials)
        self.sns = sns_client or boto3.client("sns", **credentials)

        # Set up Jinja env
        env = Environment(
            loader=FileSystemLoader(TEMPLATES_DIR),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self.template = env.get_template("otp_code.html.jinja")

    def deliver(self, identifier: str, channel: str, otp: str) -> None:
        try:
            if channel == "phone":
                resp = self.sns.publish(PhoneNumber=identifier, Message=otp_text(otp))
            else:
                resp = self.send_email(identifier, otp)
        except ClientError as e:
            code = e.response["Error"]["Code"]
            if code in REJECTED_DESTINATION_CODES:
                logger.error(f"AWS rejected OTP destination={identifier} code={code}")
                raise ValidationError(f"Could not deliver OTP to {identifier}")
            logger.exception(f"Unexpected AWS error delivering OTP to {identifier}: {code}")
            raise UpstreamFailure("Failed to send OTP") from e
        except BotoCoreError as e:
            logger.exception(f"AWS unreachable while delivering OTP to {identifier}")
            raise UpstreamFailure("Failed to send OTP") from e

        logger.info(
            f"OTP delivered via {channel}: {identifier}, Message ID: {resp.get('MessageId')}"
        )

    def send_email(self, email: str, otp: str) -> dict:
        # Render Jinja email template
        html_body = self.template.render(otp=otp, lifetime=OTP_LIFETIME_MINUTES)

        return self.ses.send_email(
            Source=AWS_SES_SENDER_EMAIL,
            Destination={"ToAddresses": [email]},
            Message={
                "Subject": {"Data": "Your Maapaap Verification Code"},
                "Body": {
                    "Html": {"Data": html_body},
                    "Text": {"Data": otp_text(otp)},
                },
            },
        )


def build_delivery(backend: str = OTP_DELIVERY):
    if backend == "aws":
        return AWSDelivery()
    if backend != "log":
        raise ValueError(f"Unknown OTP_DELIVERY backend: {backend}")
    return LogDelivery()
