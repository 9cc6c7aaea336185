import io
import base64
import qrcode


def render_qr_code(payload: str) -> str:
    qr = qrcode.QRCode(box_size=10, border=4)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color='black', back_color='white')

    buffered = io.BytesIO()
    img.save(buffered, format='PNG')
    return f"data:image/png;base64,{base64.b64encode(buffered.getvalue()).decode('ascii')}"
