"""
Email service for sending verification and password reset codes using SendGrid
"""

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content
from config import AppConfig, EmailConfig, UserAuth, get_logger

logger = get_logger(__name__)


class EmailService:
    def __init__(self):
        self.api_key = EmailConfig.SENDGRID_API_KEY
        self.from_email = EmailConfig.FROM_EMAIL
        self.app_name = AppConfig.APP_NAME

        if not self.api_key:
            logger.warning("SENDGRID_API_KEY not found in environment variables")

    def _send_code_email(self, to_email: str, name: str, code: str, code_type: str) -> bool:
        """
        Send a one-time code email. Registration and password reset share
        this template.

        Returns:
            bool: True if email sent successfully, False otherwise
        """
        try:
            if not self.api_key:
                logger.error("SendGrid API key not configured")
                return False

            subject = f"Your {self.app_name} {code_type} Code"
            minutes = UserAuth.OTP_EXPIRE_MINUTES

            html_content = f"""
            <html><body>
            <h2>{code_type} Code</h2>
            <p>Hi {name or 'there'},</p>
            <p>Your {code_type.lower()} code is:</p>
            <h1 style='letter-spacing: 0.2em;'>{code}</h1>
            <p>This code will expire in {minutes} minutes.</p>
            <p>If you didn't request this, you can ignore this email.</p>
            <br><p>The {self.app_name} Team</p>
            </body></html>
            """

            text_content = (
                f"Your {self.app_name} {code_type.lower()} code is: {code}\n"
                f"This code will expire in {minutes} minutes."
            )

            mail = Mail(Email(self.from_email), To(to_email), subject, Content("text/html", html_content))
            mail.add_content(Content("text/plain", text_content))

            sg = SendGridAPIClient(api_key=self.api_key)
            response = sg.send(mail)

            if response.status_code in [200, 201, 202]:
                logger.info(f"{code_type} code email sent successfully to {to_email}")
                return True
            logger.error(f"Failed to send {code_type.lower()} code email. Status code: {response.status_code}")
            return False

        except Exception as e:
            logger.error(f"Error sending {code_type.lower()} code email: {str(e)}")
            return False

    def send_registration_code(self, to_email: str, name: str, code: str) -> bool:
        return self._send_code_email(to_email, name, code, "Email Verification")

    def send_password_reset_code(self, to_email: str, name: str, code: str) -> bool:
        return self._send_code_email(to_email, name, code, "Password Reset")
