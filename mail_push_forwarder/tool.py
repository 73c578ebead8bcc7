import email.header
import logging
import sys


class Tool:
    mask_error_data: list[str]

    def __init__(self):
        self.mask_error_data = []

    def mask(self, secret: str | None):
        """
        Register a value that must never show up in log output.
        """
        if secret and secret not in self.mask_error_data:
            self.mask_error_data.append(secret)

    def decode_mail_data(self, value) -> str:
        if value is None:
            return ''
        result = ''
        for msg_part in email.header.decode_header(str(value)):
            part, encoding = msg_part
            result += self.binary_to_string(part, encoding=encoding)
        return result

    @staticmethod
    def binary_to_string(value, **kwargs) -> str:
        encoding = kwargs.get('encoding')
        if not encoding:
            encoding = 'utf-8'
        if type(value) is bytes:
            try:
                return str(bytes.decode(value, encoding=encoding, errors='replace'))
            except (UnicodeDecodeError, LookupError) as decode_error:
                logging.error("Can not decode value: '%s' reason: %s" % (value, decode_error))
                return str(bytes.decode(value, encoding='utf-8', errors='replace'))
        else:
            return str(value)

    def _convert_error_message(self, message) -> str:
        error_message: str = message
        if type(message) is bytes:
            error_message = self.binary_to_string(message)
        if type(message) is not str:
            error_message = '%s' % message
        _, _, tb = sys.exc_info()
        if tb is not None:
            frame = tb.tb_frame
            trace_msg = " [%s:%s in '%s']" % (frame.f_code.co_filename, tb.tb_lineno, frame.f_code.co_name)
            error_message = '%s%s' % (error_message, trace_msg)
        return error_message

    def build_error_message(self, message) -> str:
        error_message: str
        if type(message) is list:
            error_message = "; ".join(self._convert_error_message(item) for item in message)
        else:
            error_message = self._convert_error_message(message)
        for mask in self.mask_error_data:
            error_message = error_message.replace(mask, '****')
        return error_message

    def describe_error(self, error: BaseException) -> str:
        """
        Flatten exception args into one readable line.
        """
        if len(error.args) > 0:
            return ', '.join(self.binary_to_string(arg) for arg in error.args)
        return error.__class__.__name__
