"""Email delivery of low-stock alerts"""
from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string


def send_low_stock_alert(to, items, subject, recipient_name=''):
    """
    Render and send a low-stock alert listing ``items`` (alert payloads).

    Delivery errors propagate to the caller.
    """
    context = {'recipient_name': recipient_name, 'items': items}
    text_body = render_to_string('reports/low_stock_alert.txt', context)
    html_body = render_to_string('reports/low_stock_alert.html', context)

    message = EmailMultiAlternatives(
        subject=subject,
        body=text_body,
        from_email=settings.INVENTORY_CONFIG.get('ALERT_FROM_EMAIL') or settings.DEFAULT_FROM_EMAIL,
        to=[to],
    )
    message.attach_alternative(html_body, 'text/html')
    return message.send(fail_silently=False)
